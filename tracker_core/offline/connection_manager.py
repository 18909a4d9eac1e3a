# =============================================================================
# tracker_core/offline/connection_manager.py
# Transport Mode State Machine
# =============================================================================
"""
ConnectionManager - the single authority on whether the remote document
store is authoritative (connected) or the replica runs local-only
(degraded).

    uninitialized -> connecting -> connected
                                -> degraded
    connected -> degraded            (write or subscription failure)
    degraded  -> connecting          (explicit re-initialization only)

There is no health-check loop: once degraded, the session stays degraded
until a caller deliberately re-initializes the sync engine.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set
import logging

from tracker_core.errors import SyncStateError

logger = logging.getLogger(__name__)


class SyncMode(Enum):
    """Transport mode states."""
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"     # Remote store is authoritative
    DEGRADED = "degraded"       # Local-only persistence


ALLOWED_TRANSITIONS: Dict[SyncMode, Set[SyncMode]] = {
    SyncMode.UNINITIALIZED: {SyncMode.CONNECTING},
    SyncMode.CONNECTING: {SyncMode.CONNECTED, SyncMode.DEGRADED},
    SyncMode.CONNECTED: {SyncMode.DEGRADED},
    SyncMode.DEGRADED: {SyncMode.CONNECTING},
}


@dataclass
class ConnectionState:
    """Current mode with metadata."""
    mode: SyncMode = SyncMode.UNINITIALIZED
    last_change: Optional[datetime] = None
    last_connected: Optional[datetime] = None
    ever_connected: bool = False
    demotions: int = 0
    reason: Optional[str] = None


class ConnectionManager:
    """
    Usage:
        connection = ConnectionManager()
        connection.begin_connect()
        connection.mark_connected()
        if connection.is_local_only:
            ...persist to device storage
    """

    def __init__(self):
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def mode(self) -> SyncMode:
        return self._state.mode

    @property
    def is_connected(self) -> bool:
        return self._state.mode == SyncMode.CONNECTED

    @property
    def is_local_only(self) -> bool:
        """Anything other than connected persists locally."""
        return self._state.mode != SyncMode.CONNECTED

    @property
    def ever_connected(self) -> bool:
        return self._state.ever_connected

    def _transition(self, target: SyncMode, reason: Optional[str] = None) -> None:
        with self._lock:
            current = self._state.mode
            if target not in ALLOWED_TRANSITIONS[current]:
                raise SyncStateError(
                    f"Cannot move from {current.value} to {target.value}",
                    current=current.value,
                    requested=target.value,
                )
            self._state.mode = target
            self._state.last_change = datetime.now()
            self._state.reason = reason
            if target == SyncMode.CONNECTED:
                self._state.ever_connected = True
                self._state.last_connected = self._state.last_change
            elif target == SyncMode.DEGRADED:
                self._state.demotions += 1

        logger.info(f"Sync mode changed: {current.value} -> {target.value}"
                    + (f" ({reason})" if reason else ""))
        self._notify_callbacks()

    def begin_connect(self) -> None:
        self._transition(SyncMode.CONNECTING)

    def mark_connected(self) -> None:
        self._transition(SyncMode.CONNECTED)

    def demote(self, reason: str) -> bool:
        """
        Move to degraded. Returns True if this call changed the mode; a
        session that is already degraded stays as it is.
        """
        with self._lock:
            if self._state.mode == SyncMode.DEGRADED:
                return False
            self._transition(SyncMode.DEGRADED, reason)
            return True

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for mode changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Status information for display."""
        return {
            "mode": self._state.mode.value,
            "is_connected": self.is_connected,
            "ever_connected": self._state.ever_connected,
            "last_change": self._state.last_change.isoformat() if self._state.last_change else None,
            "last_connected": self._state.last_connected.isoformat() if self._state.last_connected else None,
            "demotions": self._state.demotions,
            "reason": self._state.reason,
        }
