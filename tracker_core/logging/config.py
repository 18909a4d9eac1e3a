# =============================================================================
# tracker_core/logging/config.py
# Logging Configuration for the Sync Core
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import List, Optional, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Relative to the working directory of the host application
LOG_DIR = Path("logs")

# Client libraries that log every HTTP round trip at INFO
NOISY_LOGGERS = (
    "urllib3",
    "httpx",
    "httpcore",
    "hpack",
    "supabase",
    "postgrest",
    "storage3",
    "google_auth_oauthlib",
)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = False,
    log_filename: Optional[str] = None,
) -> None:
    """
    Route sync-core logging to stdout and, optionally, a daily file.

    Called once by ``get_data_service`` with ``Settings.log_level``
    (``TRACKER_LOG_LEVEL``); an unknown level name falls back to INFO.

    Args:
        level: Logging level or level name such as "debug"
        log_to_file: Also write to logs/<log_filename>
        log_filename: Defaults to sync_YYYY-MM-DD.log
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        log_filename = log_filename or f"sync_{datetime.now():%Y-%m-%d}.log"
        handlers.append(logging.FileHandler(LOG_DIR / log_filename))

    logging.basicConfig(
        level=_resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("tracker_core").info(
        f"Logging initialized at {logging.getLevelName(_resolve_level(level))}"
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; ``tracker_core.errors`` reports through one of these."""
    return logging.getLogger(name)


class LogContext:
    """
    Brackets a remote or mailbox round trip with start and end lines.

    Usage:
        with LogContext(logger, "Broadcast PLAN to 3 recipients"):
            transport.send_message(to, bcc, subject, body)
        # Broadcast PLAN to 3 recipients... started
        # Broadcast PLAN to 3 recipients... completed (0.31s)

    A failure is logged as a one-line warning and re-raised; the caller
    decides whether it demotes the session or is reported by handle_error.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.monotonic() - self._started
        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.warning(f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}")
        return False
