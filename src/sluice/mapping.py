"""
Parameter and row mapping.

Commands accept row-shaped Python objects as parameters and can map
result rows onto Python types. Both directions are handled here:

- to_params() turns a mapping, dataclass, named tuple, model or plain
  object into the named parameters psycopg binds to ``%(name)s``
  placeholders (sequences pass through for ``%s`` placeholders).
- row_factory_for() builds a psycopg row factory for a requested row type:
  dicts by default, the first column for scalar types, and a
  case-insensitive column-to-parameter match for structured types.
"""

import dataclasses
import inspect
import uuid
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Any

from psycopg.rows import dict_row

SCALAR_TYPES = (bool, int, float, str, bytes, Decimal, date, datetime, time, timedelta, uuid.UUID)


def to_params(obj: Any) -> dict[str, Any] | Sequence[Any] | None:
    """
    Convert a parameter object into something psycopg can bind.

    Args:
        obj: None, a mapping, a sequence of positional values, a dataclass
            instance, a named tuple, a model exposing model_dump(), or any
            object with instance attributes

    Returns:
        A dict of named parameters, the positional sequence unchanged, or
        None when there are no parameters

    Raises:
        TypeError: If the object cannot supply parameters
    """
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, (str, bytes)):
        raise TypeError(f"Cannot use {type(obj).__name__} as query parameters")
    if isinstance(obj, tuple) and hasattr(obj, "_asdict"):
        return dict(obj._asdict())
    if isinstance(obj, (list, tuple)):
        return obj
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if callable(getattr(obj, "model_dump", None)):
        return obj.model_dump()
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    raise TypeError(f"Cannot use {type(obj).__name__} as query parameters")


def merge_params(params: Any, shared: Any = None) -> dict[str, Any] | Sequence[Any] | None:
    """
    Combine an item's own parameters with parameters shared by every item.

    Shared values win when both define the same name.
    """
    own = to_params(params)
    extra = to_params(shared)
    if not extra:
        return own
    if own is None:
        return extra
    if not isinstance(own, dict) or not isinstance(extra, dict):
        raise TypeError("Positional parameters cannot be merged with shared parameters")
    return {**own, **extra}


def is_scalar_type(row_type: Any) -> bool:
    return isinstance(row_type, type) and issubclass(row_type, SCALAR_TYPES)


def scalar_row(row_type: type):
    """Row factory returning the first column, coerced to row_type."""

    def factory(cursor):
        def make_row(values: Sequence[Any]) -> Any:
            value = values[0]
            if value is None or isinstance(value, row_type):
                return value
            return row_type(value)

        return make_row

    return factory


@lru_cache(maxsize=None)
def _parameter_names(cls: type) -> dict[str, str]:
    """Lower-cased name -> real name for every keyword the constructor accepts."""
    if dataclasses.is_dataclass(cls):
        names = [f.name for f in dataclasses.fields(cls) if f.init]
    else:
        signature = inspect.signature(cls)
        names = [
            p.name
            for p in signature.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]
    return {name.lower(): name for name in names}


def case_insensitive_class_row(cls: type):
    """
    Row factory building cls from columns matched to its constructor
    parameters regardless of case. Columns with no matching parameter are
    ignored.
    """
    fields = _parameter_names(cls)

    def factory(cursor):
        columns = [column.name for column in cursor.description or ()]
        targets = [fields.get(name.lower()) for name in columns]

        def make_row(values: Sequence[Any]) -> Any:
            kwargs = {target: value for target, value in zip(targets, values) if target}
            return cls(**kwargs)

        return make_row

    return factory


def row_factory_for(row_type: type | None = None):
    if row_type is None or row_type is dict:
        return dict_row
    if is_scalar_type(row_type):
        return scalar_row(row_type)
    return case_insensitive_class_row(row_type)
