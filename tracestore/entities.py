"""
Trace Entities
==============

Internal, storage-independent representation of a trace and its collections.

A single TraceInfo serves both external shapes (legacy and v3); rendering to
each shape lives in ``tracestore.api.projection``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
from uuid import uuid4

# Reserved system tag holding the trace's artifact storage location
ARTIFACT_LOCATION_TAG_KEY = "mlflow.artifactLocation"

# Request IDs generated for v3 traces carry this prefix
TRACE_REQUEST_ID_PREFIX = "tr-"

MAX_REQUEST_ID_LENGTH = 50
MAX_KEY_LENGTH = 250
MAX_VALUE_LENGTH = 8000
MAX_PREVIEW_LENGTH = 1000
TRUNCATION_SUFFIX = "..."


class TraceStatus(str, Enum):
    """Lifecycle status of a trace, stored by value."""

    UNSPECIFIED = "TRACE_STATUS_UNSPECIFIED"
    IN_PROGRESS = "IN_PROGRESS"
    OK = "OK"
    ERROR = "ERROR"

    @classmethod
    def from_string(cls, value) -> "TraceStatus":
        """Parse a status, falling back to UNSPECIFIED for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNSPECIFIED

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TraceStatus.OK, TraceStatus.ERROR})


@dataclass
class TraceTag:
    """Key/value annotation on a trace."""
    key: str
    value: str
    request_id: Optional[str] = None


@dataclass
class TraceRequestMetadata:
    """Key/value request context captured at trace start/end."""
    key: str
    value: str
    request_id: Optional[str] = None


@dataclass
class Experiment:
    """Experiment record as seen by the trace store."""
    experiment_id: str
    name: str
    artifact_location: Optional[str] = None
    lifecycle_stage: str = "active"
    creation_time: Optional[int] = None


@dataclass
class TraceInfo:
    """
    A recorded execution with lifecycle status and timing.

    Attributes:
        request_id: Unique trace identifier (immutable once assigned)
        experiment_id: Owning experiment
        timestamp_ms: Creation time, milliseconds since epoch
        status: Lifecycle status
        execution_time_ms: Duration, set once the trace reaches a terminal status
        client_request_id: Opaque caller-supplied correlation id
        request_preview: Truncated request payload preview
        response_preview: Truncated response payload preview
        tags: Tag key -> value
        request_metadata: Metadata key -> value
    """
    request_id: Optional[str]
    experiment_id: str
    timestamp_ms: int
    status: TraceStatus = TraceStatus.IN_PROGRESS
    execution_time_ms: Optional[int] = None
    client_request_id: Optional[str] = None
    request_preview: Optional[str] = None
    response_preview: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    request_metadata: Dict[str, str] = field(default_factory=dict)


def generate_request_id() -> str:
    """Generate a request ID for a legacy trace."""
    return uuid4().hex


def generate_trace_id_v3() -> str:
    """Generate a request ID for a v3 trace."""
    return f"{TRACE_REQUEST_ID_PREFIX}{uuid4().hex}"


def truncate_preview(value: Optional[str]) -> Optional[str]:
    """Clip a payload preview to the column width."""
    if value is None or len(value) <= MAX_PREVIEW_LENGTH:
        return value
    return value[: MAX_PREVIEW_LENGTH - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX
