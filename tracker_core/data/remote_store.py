# =============================================================================
# tracker_core/data/remote_store.py
# Remote Collaborator Interfaces and In-Memory Implementations
# =============================================================================
"""
The sync engine talks to the remote side only through these two narrow
interfaces:

    RemoteDocumentStore   bulk read, subscribe, create-or-replace, partial update
    BlobStorage           upload inline data, get a durable URL back

MockDocumentStore / MockBlobStorage keep everything in memory. They back the
demo mode (no credentials needed) and the test-suite, and can be told to
fail so the degraded path can be exercised.
"""

from __future__ import annotations
import copy
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[Dict[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


def sanitize_document(value: Any) -> Any:
    """
    Normalize a document read from the remote store.

    - datetime / date values (and timestamp objects exposing ``to_datetime``
      or ``isoformat``) become ISO-8601 strings
    - reference values (objects with ``id`` and ``path``, or ``{"$ref": ...}``
      mappings) become their plain identifier
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [sanitize_document(v) for v in value]
    if isinstance(value, dict):
        if set(value) == {"$ref"}:
            return str(value["$ref"]).rstrip("/").split("/")[-1]
        return {str(k): sanitize_document(v) for k, v in value.items()}
    if callable(getattr(value, "to_datetime", None)):
        return value.to_datetime().isoformat()
    if callable(getattr(value, "isoformat", None)):
        return value.isoformat()
    if hasattr(value, "path") and hasattr(value, "id"):
        return str(value.id)
    return str(value)


class RemoteDocumentStore(ABC):
    """Four named collections of JSON documents keyed by ``id``."""

    @abstractmethod
    def fetch_all(self, collection: str) -> List[Dict[str, Any]]:
        """Return every document in the collection."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Deliver full snapshots of the collection as it changes."""

    @abstractmethod
    def upsert(self, collection: str, record_id: str, document: Dict[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    def update(self, collection: str, record_id: str, updates: Dict[str, Any]) -> None:
        """Merge fields into an existing document."""


class BlobStorage(ABC):
    """Binary attachment storage."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store ``data`` at ``path`` and return a durable fetch URL."""


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class MockDocumentStore(RemoteDocumentStore):
    """
    In-memory document store.

    Set ``fail_reads`` / ``fail_writes`` to make subsequent calls raise
    ConnectionError. ``push_snapshot`` delivers the current contents of a
    collection to its subscribers, the way a live listener would.
    """

    def __init__(self, documents: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._docs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscribers: Dict[str, List[tuple]] = {}
        self._lock = threading.RLock()
        self.fail_reads = False
        self.fail_writes = False
        self.write_log: List[tuple] = []
        for collection, docs in (documents or {}).items():
            for doc in docs:
                self._docs.setdefault(collection, {})[doc["id"]] = copy.deepcopy(doc)

    def _check(self, failing: bool, operation: str) -> None:
        if failing:
            raise ConnectionError(f"Remote store unavailable during {operation}")

    def fetch_all(self, collection: str) -> List[Dict[str, Any]]:
        self._check(self.fail_reads, "fetch_all")
        with self._lock:
            return [copy.deepcopy(d) for d in self._docs.get(collection, {}).values()]

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(collection, {}).get(record_id)
            return copy.deepcopy(doc) if doc is not None else None

    def subscribe(self, collection, on_snapshot, on_error) -> Unsubscribe:
        entry = (on_snapshot, on_error)
        with self._lock:
            self._subscribers.setdefault(collection, []).append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers.get(collection, []):
                    self._subscribers[collection].remove(entry)

        return unsubscribe

    def subscriber_count(self, collection: str) -> int:
        with self._lock:
            return len(self._subscribers.get(collection, []))

    def push_snapshot(self, collection: str) -> None:
        with self._lock:
            targets = list(self._subscribers.get(collection, []))
        docs = self.fetch_all(collection)
        for on_snapshot, _ in targets:
            on_snapshot(copy.deepcopy(docs))

    def push_error(self, collection: str, error: Exception) -> None:
        with self._lock:
            targets = list(self._subscribers.get(collection, []))
        for _, on_error in targets:
            on_error(error)

    def upsert(self, collection, record_id, document) -> None:
        self._check(self.fail_writes, "upsert")
        with self._lock:
            self._docs.setdefault(collection, {})[record_id] = copy.deepcopy(document)
            self.write_log.append(("upsert", collection, record_id))

    def update(self, collection, record_id, updates) -> None:
        self._check(self.fail_writes, "update")
        with self._lock:
            current = self._docs.get(collection, {}).get(record_id)
            if current is None:
                raise KeyError(f"{collection}/{record_id} does not exist")
            current.update(copy.deepcopy(updates))
            self.write_log.append(("update", collection, record_id))


class MockBlobStorage(BlobStorage):
    """In-memory blob storage; URLs are ``base_url`` + path."""

    def __init__(self, base_url: str = "https://blobs.local/"):
        self.base_url = base_url
        self.blobs: Dict[str, bytes] = {}
        self.fail_uploads = False

    def upload(self, path, data, content_type="application/octet-stream") -> str:
        if self.fail_uploads:
            raise ConnectionError(f"Upload of {path} failed")
        self.blobs[path] = bytes(data)
        return f"{self.base_url}{path}"
