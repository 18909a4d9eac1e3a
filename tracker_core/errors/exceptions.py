# =============================================================================
# tracker_core/errors/exceptions.py
# Exception Hierarchy for the Sales Tracker Sync Core
# =============================================================================

from typing import Optional, Dict, Any


class TrackerError(Exception):
    """
    Base exception for all sync core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "REMOTE_001")
        details: Additional context as a dictionary
        recoverable: Whether the session can continue after this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "TRACKER_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigMissingError(TrackerError):
    """Raised when remote credentials or channel secrets are not configured"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# REMOTE STORE
# =============================================================================

class RemoteUnavailableError(TrackerError):
    """Raised when the remote document store fails an authoritative operation"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


class UploadFailureError(TrackerError):
    """Raised when an attachment could not be uploaded to blob storage"""

    def __init__(
        self,
        message: str,
        attachment: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if attachment:
            details["attachment"] = attachment

        super().__init__(
            message=message,
            code="UPLOAD_001",
            details=details,
            **kwargs,
        )


class SyncStateError(TrackerError):
    """Raised on an invalid transport mode transition"""

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        requested: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if current:
            details["current"] = current
        if requested:
            details["requested"] = requested

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# EMAIL CHANNEL
# =============================================================================

class DecodeFailureError(TrackerError):
    """Raised when a transport envelope cannot be decrypted or parsed"""

    def __init__(
        self,
        message: str,
        message_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if message_id:
            details["message_id"] = message_id

        super().__init__(
            message=message,
            code="DECODE_001",
            details=details,
            **kwargs,
        )


class AuthRequiredError(TrackerError):
    """Raised when the email channel is used before the consent flow completed"""

    def __init__(self, message: str = "Not Authenticated", **kwargs):
        super().__init__(
            message=message,
            code="AUTH_001",
            **kwargs,
        )


# =============================================================================
# RECORDS
# =============================================================================

class RecordValidationError(TrackerError):
    """Raised when a record breaks a data model invariant"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        record_id: Optional[str] = None,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if record_id:
            details["record_id"] = record_id
        if field:
            details["field"] = field

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )
