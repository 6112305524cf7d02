"""
Trace Storage Module
====================

Lifecycle store for trace metadata (status, timing, tags, request metadata).

Components:
- TraceStore: start/end/get/tag/purge operations
- validate_delete_criteria: bulk-delete input rules

Usage:
    from tracestore.storage.trace import TraceStore
    from tracestore.config import TraceStoreConfig

    store = TraceStore(TraceStoreConfig.from_env())
    await store.connect()

    trace = await store.start_trace(experiment_id, timestamp_ms=now_ms, tags={"team": "ml"})
    trace = await store.end_trace(trace.request_id, timestamp_ms=later_ms, status="OK")

    await store.close()
"""

from .trace_store import TraceStore, validate_delete_criteria

__all__ = [
    "TraceStore",
    "validate_delete_criteria",
]
