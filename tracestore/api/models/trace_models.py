"""
Trace Wire Models
=================

Pydantic shapes for traces as they cross the service boundary.

- LegacyTraceInfo: flat record with status enum and key/value lists
- TraceInfoV3: trace_id + location + request time/duration, tags/metadata as maps
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LegacyTraceStatus(str, Enum):
    """Status enumeration of the legacy trace shape."""

    TRACE_STATUS_UNSPECIFIED = "TRACE_STATUS_UNSPECIFIED"
    OK = "OK"
    ERROR = "ERROR"
    IN_PROGRESS = "IN_PROGRESS"


class TraceState(str, Enum):
    """State enumeration of the v3 trace shape."""

    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"
    OK = "OK"
    ERROR = "ERROR"
    IN_PROGRESS = "IN_PROGRESS"


class KeyValue(BaseModel):
    """Tag or request-metadata entry in the legacy shape."""
    key: str
    value: str


class LegacyTraceInfo(BaseModel):
    """Trace as returned by start/end/get in the legacy shape."""
    request_id: str
    experiment_id: str
    timestamp_ms: int
    execution_time_ms: Optional[int] = None
    status: LegacyTraceStatus = LegacyTraceStatus.TRACE_STATUS_UNSPECIFIED
    request_metadata: List[KeyValue] = Field(default_factory=list)
    tags: List[KeyValue] = Field(default_factory=list)


class MlflowExperimentLocation(BaseModel):
    experiment_id: str


class TraceLocation(BaseModel):
    """Where a v3 trace lives. Only experiment locations are supported."""
    type: str = "MLFLOW_EXPERIMENT"
    mlflow_experiment: MlflowExperimentLocation


class TraceInfoV3(BaseModel):
    """Trace in the v3 shape."""
    trace_id: Optional[str] = None
    client_request_id: Optional[str] = None
    trace_location: TraceLocation
    request_preview: Optional[str] = None
    response_preview: Optional[str] = None
    request_time: datetime
    execution_duration: Optional[timedelta] = None
    state: TraceState = TraceState.STATE_UNSPECIFIED
    trace_metadata: Dict[str, str] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def experiment_id(self) -> str:
        return self.trace_location.mlflow_experiment.experiment_id
