from .tracking_service import (
    REQUEST_ID_OVERRIDE_TAG_KEY,
    TrackingService,
    split_request_id_override,
)

__all__ = [
    "REQUEST_ID_OVERRIDE_TAG_KEY",
    "TrackingService",
    "split_request_id_override",
]
