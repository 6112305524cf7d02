from .trace_models import (
    KeyValue,
    LegacyTraceInfo,
    LegacyTraceStatus,
    MlflowExperimentLocation,
    TraceInfoV3,
    TraceLocation,
    TraceState,
)

__all__ = [
    "KeyValue",
    "LegacyTraceInfo",
    "LegacyTraceStatus",
    "MlflowExperimentLocation",
    "TraceInfoV3",
    "TraceLocation",
    "TraceState",
]
