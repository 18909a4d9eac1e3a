# =============================================================================
# tracker_core/errors/__init__.py
# Centralized Error Handling for the Sync Core
# =============================================================================

from .exceptions import (
    TrackerError,
    ConfigMissingError,
    RemoteUnavailableError,
    UploadFailureError,
    SyncStateError,
    DecodeFailureError,
    AuthRequiredError,
    RecordValidationError,
)

from .handlers import (
    handle_error,
    safe_execute,
)

__all__ = [
    # Exceptions
    "TrackerError",
    "ConfigMissingError",
    "RemoteUnavailableError",
    "UploadFailureError",
    "SyncStateError",
    "DecodeFailureError",
    "AuthRequiredError",
    "RecordValidationError",
    # Handlers
    "handle_error",
    "safe_execute",
]
