"""
Tracking Service
================

In-process boundary over TraceStore. Accepts caller input, delegates to the
store and renders results in the legacy or v3 wire shape.

The reserved tag ``tracestore.testing.overrideRequestId`` is a test seam:
it is stripped from inbound tags and passed to the store as an explicit
request id override. It is never persisted.
"""

import structlog
from typing import Any, List, Optional, Tuple, Union

from tracestore.api.models import LegacyTraceInfo, TraceInfoV3
from tracestore.api.projection import (
    from_trace_info_v3,
    to_legacy_trace_info,
    to_trace_info_v3,
)
from tracestore.entities import TraceStatus
from tracestore.storage.reconciler import KeyValuePairs
from tracestore.storage.trace import TraceStore

log = structlog.get_logger()

REQUEST_ID_OVERRIDE_TAG_KEY = "tracestore.testing.overrideRequestId"


def _pair_key_value(pair: Any) -> Tuple[Any, Any]:
    if hasattr(pair, "key") and hasattr(pair, "value"):
        return pair.key, pair.value
    key, value = pair
    return key, value


def split_request_id_override(
    tags: Optional[KeyValuePairs],
) -> Tuple[Optional[str], List[Tuple[Any, Any]]]:
    """
    Separate the override tag from the caller's tags.

    Returns:
        (override value or None, remaining tags as key/value tuples)
    """
    if not tags:
        return None, []

    items = tags.items() if hasattr(tags, "items") else (_pair_key_value(p) for p in tags)
    override = None
    remaining = []
    for key, value in items:
        if key == REQUEST_ID_OVERRIDE_TAG_KEY:
            override = value
        else:
            remaining.append((key, value))
    return override, remaining


class TrackingService:
    """
    Trace operations exposed to callers.

    Example:
        service = TrackingService(store)
        info = await service.start_trace("1", 1700000000000, tags={"k": "v"})
        info = await service.end_trace(info.request_id, 1700000000250, "OK")
    """

    def __init__(self, store: TraceStore):
        self.store = store

    async def start_trace(
        self,
        experiment_id: str,
        timestamp_ms: int,
        request_metadata: Optional[KeyValuePairs] = None,
        tags: Optional[KeyValuePairs] = None,
    ) -> LegacyTraceInfo:
        override, tags = split_request_id_override(tags)
        if override:
            log.debug("Request id override supplied", request_id=override)

        trace = await self.store.start_trace(
            experiment_id,
            timestamp_ms,
            request_metadata=request_metadata,
            tags=tags,
            override_request_id=override,
        )
        return to_legacy_trace_info(trace)

    async def start_trace_v3(self, trace_info: TraceInfoV3) -> TraceInfoV3:
        """Create a trace from a v3 record and echo it back as stored."""
        trace = from_trace_info_v3(trace_info)
        override, tags = split_request_id_override(trace.tags)
        trace.tags = dict(tags)

        created = await self.store.start_trace_v3(trace, override_request_id=override)
        return to_trace_info_v3(created)

    async def end_trace(
        self,
        request_id: str,
        timestamp_ms: int,
        status: Union[TraceStatus, str],
        request_metadata: Optional[KeyValuePairs] = None,
        tags: Optional[KeyValuePairs] = None,
    ) -> LegacyTraceInfo:
        trace = await self.store.end_trace(
            request_id,
            timestamp_ms,
            status,
            request_metadata=request_metadata,
            tags=tags,
        )
        return to_legacy_trace_info(trace)

    async def get_trace_info(self, request_id: str) -> LegacyTraceInfo:
        return to_legacy_trace_info(await self.store.get_trace_info(request_id))

    async def get_trace_info_v3(self, trace_id: str) -> TraceInfoV3:
        return to_trace_info_v3(await self.store.get_trace_info(trace_id))

    async def set_trace_tag(self, request_id: str, key: str, value: str) -> None:
        await self.store.set_trace_tag(request_id, key, value)

    async def delete_trace_tag(self, request_id: str, key: str) -> None:
        await self.store.delete_trace_tag(request_id, key)

    async def delete_traces(
        self,
        experiment_id: str,
        max_timestamp_millis: Optional[int] = None,
        max_traces: Optional[int] = None,
        request_ids: Optional[List[str]] = None,
    ) -> int:
        return await self.store.delete_traces(
            experiment_id,
            max_timestamp_millis=max_timestamp_millis,
            max_traces=max_traces,
            request_ids=request_ids,
        )
