# =============================================================================
# tracker_core/offline/notifier.py
# Change Notifier - fan-out of replica mutations to observers
# =============================================================================

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """What changed in the replica. ``kind`` is "add", "update", "upsert" or "snapshot"."""
    kind: str
    collection: Optional[str] = None
    record_id: Optional[str] = None


Observer = Callable[[ChangeEvent], None]


class Subscription:
    """Deregistration handle returned by ChangeNotifier.subscribe; call it to unsubscribe."""

    def __init__(self, notifier: ChangeNotifier, observer: Observer):
        self._notifier = notifier
        self.observer = observer
        self.active = True

    def unsubscribe(self) -> None:
        self._notifier._remove(self)

    def __call__(self) -> None:
        self.unsubscribe()


class ChangeNotifier:
    """
    Process-wide publish point for replica changes.

    Observers run after the store has been updated. An observer whose
    subscription is cancelled is never called again, including by a publish
    that is already iterating.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        # Held across each observer call so unsubscribe waits for a running
        # callback; re-entrant for observers that unsubscribe themselves
        self._lock = threading.RLock()

    def subscribe(self, observer: Observer) -> Subscription:
        subscription = Subscription(self, observer)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = list(self._subscriptions)

        for subscription in targets:
            with self._lock:
                if not subscription.active:
                    continue
                try:
                    subscription.observer(event)
                except Exception as e:
                    logger.error(f"Error in change observer: {e}", exc_info=True)
