"""Infrastructure utilities for logging, metrics, retries, and persistence."""

from .logging import configure_logging
from .metrics import AggregatedMetrics, MetricsAggregator
from .persistence import SnapshotStore, SQLiteSnapshotStore
from .retry import RetryableError, RetryExecutor, RetryPolicy

__all__ = [
    "configure_logging",
    "AggregatedMetrics",
    "MetricsAggregator",
    "SnapshotStore",
    "SQLiteSnapshotStore",
    "RetryableError",
    "RetryExecutor",
    "RetryPolicy",
]
