"""
Storage layer: ORM models, database helpers, reconciler and the trace store.
"""

from .models import Base, SqlExperiment, SqlTraceInfo, SqlTraceMetadata, SqlTraceTag
from .trace import TraceStore

__all__ = [
    "Base",
    "SqlExperiment",
    "SqlTraceInfo",
    "SqlTraceMetadata",
    "SqlTraceTag",
    "TraceStore",
]
