"""
tracestore: metadata persistence for execution traces

Modules:
    - entities: Internal trace representation and status enum
    - storage: SQLAlchemy models, reconciler and the lifecycle store
    - api: Wire shapes (legacy and v3) and status projection
    - services: Façade rendering store results into wire shapes
    - config: Connection settings
"""

__version__ = "0.1.0"

from .entities import TraceInfo, TraceStatus, TraceTag, TraceRequestMetadata, Experiment
from .exceptions import (
    ErrorCode,
    TraceStoreError,
    InvalidParameterError,
    InvalidTraceStateError,
    TraceNotFoundError,
    TraceTagDoesNotExistError,
    TraceInternalError,
)
from .config import TraceStoreConfig
from .storage.trace import TraceStore

__all__ = [
    "TraceInfo",
    "TraceStatus",
    "TraceTag",
    "TraceRequestMetadata",
    "Experiment",
    "ErrorCode",
    "TraceStoreError",
    "InvalidParameterError",
    "InvalidTraceStateError",
    "TraceNotFoundError",
    "TraceTagDoesNotExistError",
    "TraceInternalError",
    "TraceStoreConfig",
    "TraceStore",
    "__version__",
]
