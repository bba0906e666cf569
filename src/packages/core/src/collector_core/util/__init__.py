"""Utility modules."""
from collector_core.util.ids import generate_id, generate_token
from collector_core.util.time import utc_now_iso, epoch_now
from collector_core.util.errors import (
    ValidationError,
    TransientError,
    PermanentItemError,
    FatalJobError,
    InputSpecError,
    StoreError,
    ErrorInfo,
    classify_error,
    is_transient,
)

__all__ = [
    "generate_id",
    "generate_token",
    "utc_now_iso",
    "epoch_now",
    "ValidationError",
    "TransientError",
    "PermanentItemError",
    "FatalJobError",
    "InputSpecError",
    "StoreError",
    "ErrorInfo",
    "classify_error",
    "is_transient",
]
