"""
Status Projection
=================

Stateless renderers from the internal TraceInfo to the two wire shapes,
plus the inbound decoder for v3 records.

Unrecognized internal statuses render as the shape's "unspecified" member;
rendering never fails on status.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from tracestore.api.models import (
    KeyValue,
    LegacyTraceInfo,
    LegacyTraceStatus,
    MlflowExperimentLocation,
    TraceInfoV3,
    TraceLocation,
    TraceState,
)
from tracestore.entities import TraceInfo, TraceStatus

_LEGACY_STATUS = {
    TraceStatus.IN_PROGRESS: LegacyTraceStatus.IN_PROGRESS,
    TraceStatus.OK: LegacyTraceStatus.OK,
    TraceStatus.ERROR: LegacyTraceStatus.ERROR,
}

_V3_STATE = {
    TraceStatus.IN_PROGRESS: TraceState.IN_PROGRESS,
    TraceStatus.OK: TraceState.OK,
    TraceStatus.ERROR: TraceState.ERROR,
}

_STATUS_FROM_V3_STATE = {state: status for status, state in _V3_STATE.items()}


def to_legacy_status(status: Union[TraceStatus, str, None]) -> LegacyTraceStatus:
    return _LEGACY_STATUS.get(TraceStatus.from_string(status), LegacyTraceStatus.TRACE_STATUS_UNSPECIFIED)


def to_v3_state(status: Union[TraceStatus, str, None]) -> TraceState:
    return _V3_STATE.get(TraceStatus.from_string(status), TraceState.STATE_UNSPECIFIED)


def from_v3_state(state: Union[TraceState, str, None]) -> TraceStatus:
    """Parse a v3 state leniently; unknown values become UNSPECIFIED."""
    try:
        state = TraceState(state)
    except ValueError:
        return TraceStatus.UNSPECIFIED
    return _STATUS_FROM_V3_STATE.get(state, TraceStatus.UNSPECIFIED)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def _ms_to_datetime(timestamp_ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=timestamp_ms)


def _datetime_to_ms(value: datetime) -> int:
    # Naive datetimes are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // _ONE_MS


def _duration_to_ms(value: Optional[timedelta]) -> Optional[int]:
    if value is None:
        return None
    return value // _ONE_MS


def to_legacy_trace_info(trace: TraceInfo) -> LegacyTraceInfo:
    """Render a trace in the legacy shape."""
    return LegacyTraceInfo(
        request_id=trace.request_id,
        experiment_id=trace.experiment_id,
        timestamp_ms=trace.timestamp_ms,
        execution_time_ms=trace.execution_time_ms,
        status=to_legacy_status(trace.status),
        request_metadata=[KeyValue(key=k, value=v) for k, v in trace.request_metadata.items()],
        tags=[KeyValue(key=k, value=v) for k, v in trace.tags.items()],
    )


def to_trace_info_v3(trace: TraceInfo) -> TraceInfoV3:
    """Render a trace in the v3 shape."""
    execution_duration = None
    if trace.execution_time_ms is not None:
        execution_duration = timedelta(milliseconds=trace.execution_time_ms)

    return TraceInfoV3(
        trace_id=trace.request_id,
        client_request_id=trace.client_request_id,
        trace_location=TraceLocation(
            mlflow_experiment=MlflowExperimentLocation(experiment_id=trace.experiment_id),
        ),
        request_preview=trace.request_preview,
        response_preview=trace.response_preview,
        request_time=_ms_to_datetime(trace.timestamp_ms),
        execution_duration=execution_duration,
        state=to_v3_state(trace.status),
        trace_metadata=dict(trace.request_metadata),
        tags=dict(trace.tags),
    )


def from_trace_info_v3(model: TraceInfoV3) -> TraceInfo:
    """Decode an inbound v3 record into the internal representation."""
    return TraceInfo(
        request_id=model.trace_id,
        experiment_id=model.experiment_id,
        timestamp_ms=_datetime_to_ms(model.request_time),
        status=from_v3_state(model.state),
        execution_time_ms=_duration_to_ms(model.execution_duration),
        client_request_id=model.client_request_id,
        request_preview=model.request_preview,
        response_preview=model.response_preview,
        tags=dict(model.tags),
        request_metadata=dict(model.trace_metadata),
    )
