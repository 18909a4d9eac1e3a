# =============================================================================
# tracker_core/errors/handlers.py
# Error Handling Utilities for the Sync Core
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar

from tracker_core.logging import get_logger
from .exceptions import TrackerError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    context: Optional[str] = None,
    log_traceback: bool = True,
) -> dict:
    """
    Centralized error logging.

    Args:
        error: The exception to handle
        context: Short description of the operation that failed
        log_traceback: Whether to attach the traceback to the log record

    Returns:
        The error as a dictionary (see TrackerError.to_dict)
    """
    if isinstance(error, TrackerError):
        info = error.to_dict()
    else:
        info = {
            "error_type": error.__class__.__name__,
            "code": "UNKNOWN",
            "message": str(error),
            "details": {"traceback": traceback.format_exc()},
            "recoverable": True,
        }

    prefix = f"{context}: " if context else ""
    logger.error(
        f"{prefix}[{info['code']}] {info['message']}",
        extra={"details": info["details"]},
        exc_info=log_traceback,
    )
    return info


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    context: Optional[str] = None,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function, logging and absorbing any exception.

    Used at the points where a failure must never reach the caller
    (best-effort broadcasts, observer fan-out).

    Usage:
        recipients = safe_execute(
            channel.broadcast, packet, user,
            default=frozenset(),
            context="Email broadcast",
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, context=context)
        return default
