"""
Trace Store Exceptions
======================

Error taxonomy for the trace lifecycle store.

- InvalidParameterError: malformed or contradictory caller input (no side effect)
- InvalidTraceStateError: lifecycle transition not allowed from the current status
- TraceNotFoundError: referenced trace or experiment does not exist
- TraceTagDoesNotExistError: delete/get target tag is absent
- TraceInternalError: backing-engine, synthesis or transaction failure
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error codes carried by every TraceStoreError."""

    INVALID_PARAMETER_VALUE = "INVALID_PARAMETER_VALUE"
    INVALID_STATE = "INVALID_STATE"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_DOES_NOT_EXIST = "RESOURCE_DOES_NOT_EXIST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TraceStoreError(Exception):
    """Base exception for trace store errors."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.original_error = original_error
        super().__init__(message)


class InvalidParameterError(TraceStoreError):
    """Raised when caller input is malformed or contradictory."""

    error_code = ErrorCode.INVALID_PARAMETER_VALUE


class InvalidTraceStateError(InvalidParameterError):
    """Raised when a trace cannot transition from its current status."""

    error_code = ErrorCode.INVALID_STATE

    def __init__(self, request_id: str, current_status: Optional[str] = None):
        self.request_id = request_id
        self.current_status = current_status
        if current_status is not None:
            message = (
                f"Trace with request_id '{request_id}' is in state '{current_status}'; "
                f"only IN_PROGRESS traces can be ended."
            )
        else:
            message = f"Trace with request_id '{request_id}' is no longer in progress."
        super().__init__(message)


class TraceNotFoundError(TraceStoreError):
    """Raised when a trace or experiment does not exist."""

    error_code = ErrorCode.RESOURCE_NOT_FOUND


class TraceTagDoesNotExistError(TraceStoreError):
    """Raised when a trace tag targeted by get/delete is absent."""

    error_code = ErrorCode.RESOURCE_DOES_NOT_EXIST

    def __init__(self, trace_id: str, key: str):
        self.trace_id = trace_id
        self.key = key
        super().__init__(
            f"No trace tag with key '{key}' for trace with trace_id '{trace_id}'"
        )


class TraceInternalError(TraceStoreError):
    """
    Raised when the backing engine or a collaborator fails.

    The message stays generic; the underlying cause is kept on
    ``original_error`` (and chained as ``__cause__``) for diagnostics.
    """

    error_code = ErrorCode.INTERNAL_ERROR


class ArtifactLocationError(TraceStoreError):
    """Raised when the artifact-location tag cannot be synthesized."""

    error_code = ErrorCode.INTERNAL_ERROR
