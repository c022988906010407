"""
Batch

Chunked batch writes with per-item fallback and result aggregation.
"""

from sluice.batch.executor import BatchExecutor

__all__ = ["BatchExecutor"]
