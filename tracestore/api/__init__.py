"""
Wire-facing shapes and rendering for traces.

Usage:
    from tracestore.api import to_legacy_trace_info, to_trace_info_v3

    payload = to_trace_info_v3(trace).model_dump(mode="json")
"""

from .projection import (
    from_trace_info_v3,
    from_v3_state,
    to_legacy_status,
    to_legacy_trace_info,
    to_trace_info_v3,
    to_v3_state,
)

__all__ = [
    "from_trace_info_v3",
    "from_v3_state",
    "to_legacy_status",
    "to_legacy_trace_info",
    "to_trace_info_v3",
    "to_v3_state",
]
