#!/usr/bin/env python3
"""sluice CLI for running queries and importing data files."""

import argparse
import asyncio
import sys
from pathlib import Path

import questionary
from rich.console import Console
from rich.table import Table

from sluice.db import Database
from sluice.errors import DataAccessError
from sluice.log import setup_logging
from sluice.results import BatchResult

console = Console()

MAX_ERRORS_SHOWN = 20


def parse_params(pairs: list[str] | None) -> dict | None:
    """Turn ["name=value", ...] into a parameter dict."""
    if not pairs:
        return None
    params = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Expected name=value, got {pair!r}")
        params[name.strip()] = value
    return params


def load_items(path: Path):
    """Load rows to import from a CSV or JSON-lines file as a DataFrame."""
    import pandas as pd

    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in (".jsonl", ".ndjson"):
        return pd.read_json(path, lines=True)
    raise ValueError(f"Unsupported file type {suffix!r}; use .csv, .jsonl or .ndjson")


def render_rows(rows: list[dict]) -> Table:
    table = Table(show_lines=False)
    columns = list(rows[0].keys()) if rows else []
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if row[c] is None else str(row[c]) for c in columns))
    return table


def render_batch_result(result: BatchResult) -> None:
    colour = "green" if result.ok else "yellow"
    console.print(
        f"[{colour}]{result.success_count} succeeded, {result.failure_count} failed[/] "
        f"({result.rows_affected} rows affected, {result.bulk_chunks} bulk chunks, "
        f"{result.fallback_chunks} fallback chunks)"
    )
    for error in result.errors[:MAX_ERRORS_SHOWN]:
        console.print(f"[red]{error}[/]")
    hidden = len(result.errors) - MAX_ERRORS_SHOWN
    if hidden > 0:
        console.print(f"[dim]... and {hidden} more errors[/]")


def confirm(args, summary: str) -> bool:
    console.print(f"[yellow]{summary}[/]")
    if args.yes:
        return True
    if not questionary.confirm("Proceed with these changes?").ask():
        console.print("[dim]Cancelled.[/]")
        return False
    return True


async def run_query(db: Database, args) -> int:
    rows = await db.query(args.sql, parse_params(args.param))
    if not rows:
        console.print("[dim]No rows.[/]")
        return 0
    console.print(render_rows(rows))
    console.print(f"[dim]{len(rows)} rows[/]")
    return 0


async def run_execute(db: Database, args) -> int:
    if not confirm(args, f"Will execute: [bold]{args.sql}[/]"):
        return 0
    affected = await db.execute(args.sql, parse_params(args.param))
    console.print(f"[green]Rows affected: {affected}[/]")
    return 0


async def run_import(db: Database, args) -> int:
    items = load_items(Path(args.file))
    if items.empty:
        console.print(f"[red]No rows found in {args.file}.[/]")
        return 0

    chunk_size = args.chunk_size or db.batch_size
    summary = (
        f"Will import [bold]{len(items)}[/] rows from {args.file} "
        f"in chunks of {chunk_size} using:\n{args.sql}"
    )
    if not confirm(args, summary):
        return 0

    result = await db.execute_batch(
        args.sql, items, parse_params(args.param), chunk_size=chunk_size
    )
    render_batch_result(result)
    return 0 if result.ok else 1


COMMANDS = {
    "query": run_query,
    "execute": run_execute,
    "import": run_import,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="sluice CLI")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    parser.add_argument("--log-level", help="Override SLUICE_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    param_help = "Query parameter as name=value (repeatable)"

    query = subparsers.add_parser("query", help="Run a query and print the rows")
    query.add_argument("sql")
    query.add_argument("-p", "--param", action="append", help=param_help)

    execute = subparsers.add_parser("execute", help="Run a write statement")
    execute.add_argument("sql")
    execute.add_argument("-p", "--param", action="append", help=param_help)
    execute.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    batch = subparsers.add_parser("import", help="Import a CSV or JSON-lines file in batches")
    batch.add_argument("sql", help="Statement with %%(column)s placeholders")
    batch.add_argument("file")
    batch.add_argument("-p", "--param", action="append", help="Shared parameter as name=value")
    batch.add_argument("--chunk-size", type=int, help="Rows per bulk command")
    batch.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    db = Database(args.database_url)

    try:
        return asyncio.run(COMMANDS[args.command](db, args))
    except (DataAccessError, ValueError, argparse.ArgumentTypeError) as exc:
        console.print(f"[red]{exc}[/]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
