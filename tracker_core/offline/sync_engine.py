# =============================================================================
# tracker_core/offline/sync_engine.py
# Remote Sync Engine
# =============================================================================
"""
RemoteSyncEngine - owns the connection to the remote document store.

Features:
- Initial bulk load of the four collections, optional live subscriptions
- Optimistic writes in connected mode, local-only writes in degraded mode
- Fail-fast demotion: one remote failure degrades the rest of the session
- Push of pending local records on (re-)initialization
- Sequential attachment upload to blob storage
- Single-worker executor for writes whose result the caller may abandon
"""

from __future__ import annotations
import base64
import binascii
import dataclasses
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from tracker_core.data.remote_store import BlobStorage, RemoteDocumentStore, sanitize_document
from tracker_core.errors import (
    RecordValidationError,
    RemoteUnavailableError,
    TrackerError,
    UploadFailureError,
    handle_error,
)
from tracker_core.logging import LogContext
from tracker_core.models import COLLECTIONS, PLANS, Attachment
from tracker_core.offline.connection_manager import SyncMode
from tracker_core.offline.replica_store import LocalReplicaStore, Mutation

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """
    Outcome of a write.

    ``applied`` means the change is in the replica; ``confirmed`` means the
    remote store holds it as well. An applied but unconfirmed write carries
    the error that prevented confirmation, if any.
    """
    applied: bool
    confirmed: bool
    record: Optional[Any] = None
    error: Optional[TrackerError] = None

    def __bool__(self) -> bool:
        return self.applied

    @classmethod
    def ok(cls, record: Any) -> WriteResult:
        return cls(applied=True, confirmed=True, record=record)

    @classmethod
    def local(cls, record: Any, error: Optional[TrackerError] = None) -> WriteResult:
        return cls(applied=True, confirmed=False, record=record, error=error)

    @classmethod
    def fail(cls, error: TrackerError) -> WriteResult:
        return cls(applied=False, confirmed=False, error=error)


def decode_inline_payload(data: str) -> Tuple[bytes, str]:
    """
    Turn an inline attachment payload into bytes and a content type.

    Accepts data URLs (``data:image/png;base64,...``), bare base64 and plain
    text, in that order.
    """
    if data.startswith("data:") and "," in data:
        header, body = data[5:].split(",", 1)
        content_type = header.split(";")[0] or "application/octet-stream"
        if header.endswith(";base64"):
            return base64.b64decode(body), content_type
        return body.encode("utf-8"), content_type
    try:
        return base64.b64decode(data, validate=True), "application/octet-stream"
    except (binascii.Error, ValueError):
        return data.encode("utf-8"), "text/plain"


class RemoteSyncEngine:
    """
    Usage:
        engine = RemoteSyncEngine(store, remote=SupabaseDocumentStore(client))
        engine.init()
        result = engine.write(CUSTOMERS, customer)
        if not result.confirmed:
            ...the change lives only on this device for now
    """

    def __init__(
        self,
        store: LocalReplicaStore,
        remote: Optional[RemoteDocumentStore] = None,
        blobs: Optional[BlobStorage] = None,
        live_updates: bool = True,
    ):
        self.store = store
        self.connection = store.connection
        self.remote = remote
        self.blobs = blobs
        self.live_updates = live_updates
        self._write_lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._init_attempts = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def mode(self) -> SyncMode:
        return self.connection.mode

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def init(self, force: bool = False) -> SyncMode:
        """
        Establish the session mode.

        Without a remote store the engine goes straight to degraded and seeds
        the replica from device storage. Otherwise pending local records are
        pushed, the four collections are bulk loaded and (optionally)
        subscribed. Any failure degrades and falls back to device storage.

        Args:
            force: Re-initialize a degraded session. Without it, calls after
                the first one return the current mode unchanged.

        Raises:
            RemoteUnavailableError: only when the very first init fails
        """
        with self._write_lock:
            if self.mode == SyncMode.CONNECTED:
                return self.mode
            if self.mode != SyncMode.UNINITIALIZED and not force:
                return self.mode

            first_attempt = self._init_attempts == 0
            self._init_attempts += 1
            self.connection.begin_connect()

            if self.remote is None:
                logger.warning("No remote configuration found. Starting in local-only mode.")
                self.connection.demote("no remote configuration")
                self.store.load_from_device()
                return self.mode

            if first_attempt:
                self.store.load()

            try:
                self._flush_pending()
                with LogContext(logger, "Bulk load from remote store"):
                    documents = {
                        name: [sanitize_document(doc) for doc in self.remote.fetch_all(name)]
                        for name in COLLECTIONS
                    }
                self.connection.mark_connected()
                self.store.replace_snapshot(documents)
                if self.live_updates:
                    self._open_subscriptions()
            except Exception as e:
                self._close_subscriptions()
                handle_error(e, context="Remote connection failed, switching to local-only mode",
                             log_traceback=False)
                self.connection.demote(f"init failed: {e}")
                self.store.load_from_device()
                if first_attempt:
                    raise RemoteUnavailableError(
                        "Failed to connect to the remote store", operation="init"
                    ) from e

            return self.mode

    def _flush_pending(self) -> int:
        """Push records applied while local-only. Raises on the first failure."""
        pushed = 0
        for name in COLLECTIONS:
            for record_id in sorted(self.store.pending_ids(name)):
                record = self.store.get(name, record_id)
                if record is None:
                    continue
                if name == PLANS and record.attachments:
                    record = dataclasses.replace(record, attachments=self._upload_all(record.attachments))
                self.remote.upsert(name, record_id, record.to_dict())
                self.store.apply_local(Mutation.add(name, record), confirmed=True)
                pushed += 1
        if pushed:
            logger.info(f"Pushed {pushed} pending records to the remote store")
        return pushed

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def _open_subscriptions(self) -> None:
        for name in COLLECTIONS:
            unsubscribe = self.remote.subscribe(
                name,
                partial(self._on_remote_snapshot, name),
                self._on_subscription_error,
            )
            self._unsubscribers.append(unsubscribe)

    def _close_subscriptions(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            try:
                unsubscribe()
            except Exception as e:
                logger.debug(f"Error closing subscription: {e}")

    def _on_remote_snapshot(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        if not self.is_connected:
            return
        self.store.replace_collection(collection, [sanitize_document(d) for d in documents])

    def _on_subscription_error(self, error: Exception) -> None:
        if self.is_connected:
            self._demote(error, operation="subscribe")

    def _demote(self, error: Exception, operation: str, collection: Optional[str] = None) -> RemoteUnavailableError:
        wrapped = RemoteUnavailableError(
            f"Remote {operation} failed, continuing in local-only mode: {error}",
            collection=collection,
            operation=operation,
        )
        handle_error(wrapped, log_traceback=False)
        if self.connection.demote(f"{operation} failed"):
            self._close_subscriptions()
            self.store.persist()
        return wrapped

    # =========================================================================
    # WRITES
    # =========================================================================

    def write(self, collection: str, record: Any) -> WriteResult:
        """Create or replace a record."""
        with self._write_lock:
            if collection == PLANS and record.attachments:
                try:
                    record = dataclasses.replace(record, attachments=self.upload_attachments(record.attachments))
                except UploadFailureError as e:
                    handle_error(e, log_traceback=False)
                    return WriteResult.fail(e)

            return self._commit(
                Mutation.add(collection, record),
                lambda: self.remote.upsert(collection, record.id, record.to_dict()),
            )

    def update(self, collection: str, record_id: str, updates: Dict[str, Any]) -> WriteResult:
        """Merge document fields into an existing record."""
        with self._write_lock:
            if self.store.get(collection, record_id) is None:
                raise RecordValidationError(
                    "Cannot update a record that does not exist",
                    collection=collection,
                    record_id=record_id,
                )

            updates = dict(updates)
            if collection == PLANS and updates.get("attachments"):
                attachments = [
                    a if isinstance(a, Attachment) else Attachment.from_dict(a)
                    for a in updates["attachments"]
                ]
                try:
                    updates["attachments"] = [a.to_dict() for a in self.upload_attachments(attachments)]
                except UploadFailureError as e:
                    handle_error(e, log_traceback=False)
                    return WriteResult.fail(e)

            push_whole = self.is_connected and record_id in self.store.pending_ids(collection)
            return self._commit(
                Mutation.update(collection, record_id, updates),
                partial(self._push_update, collection, record_id, updates, push_whole),
            )

    def _push_update(self, collection: str, record_id: str, updates: Dict[str, Any],
                     push_whole: bool) -> Optional[Any]:
        """
        Send an update to the remote store.

        A record the remote store has never seen (relayed by email, or written
        while degraded) is sent whole. Returns the record that was pushed in
        that case, else None.
        """
        if not push_whole:
            try:
                self.remote.update(collection, record_id, updates)
                return None
            except KeyError:
                logger.info(f"{collection}/{record_id} not in the remote store yet; pushing the full record")

        record = self.store.get(collection, record_id)
        if collection == PLANS and record.attachments:
            record = dataclasses.replace(record, attachments=self._upload_all(record.attachments))
        self.remote.upsert(collection, record_id, record.to_dict())
        return record

    def _commit(self, mutation: Mutation, remote_call: Callable[[], Optional[Any]]) -> WriteResult:
        # Visible at once as pending; confirmed only after the remote commit
        record = self.store.apply_local(mutation, confirmed=False)
        if not self.is_connected:
            return WriteResult.local(record)

        try:
            pushed = remote_call()
        except UploadFailureError as e:
            handle_error(e, log_traceback=False)
            return WriteResult.local(record, error=e)
        except Exception as e:
            error = self._demote(e, operation=mutation.kind, collection=mutation.collection)
            return WriteResult.local(record, error=error)

        if pushed is not None:
            return WriteResult.ok(self.store.apply_local(Mutation.add(mutation.collection, pushed), confirmed=True))
        return WriteResult.ok(self.store.apply_local(mutation, confirmed=True))

    def submit_write(self, collection: str, record: Any) -> Future:
        """Queue a write on the engine's worker; the result is applied even if nobody waits."""
        return self._get_executor().submit(self.write, collection, record)

    def submit_update(self, collection: str, record_id: str, updates: Dict[str, Any]) -> Future:
        return self._get_executor().submit(self.update, collection, record_id, updates)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="SyncWrite")
        return self._executor

    # =========================================================================
    # ATTACHMENTS
    # =========================================================================

    def upload_attachments(self, attachments: Optional[List[Attachment]]) -> List[Attachment]:
        """
        Replace inline payloads with durable URLs.

        URL attachments pass through untouched. While degraded, or without
        blob storage, payloads stay inline.

        Raises:
            UploadFailureError: when an upload fails in connected mode
        """
        if not attachments:
            return []
        if not self.is_connected or self.blobs is None:
            return list(attachments)
        return self._upload_all(attachments)

    def _upload_all(self, attachments: List[Attachment]) -> List[Attachment]:
        if self.blobs is None:
            return list(attachments)

        uploaded: List[Attachment] = []
        for attachment in attachments:
            if attachment.is_remote:
                uploaded.append(attachment)
                continue

            safe_name = attachment.name.replace("/", "_")
            path = f"attachments/{int(time.time() * 1000)}_{safe_name}"
            try:
                data, content_type = decode_inline_payload(attachment.data)
                url = self.blobs.upload(path, data, content_type)
            except Exception as e:
                raise UploadFailureError(
                    f"File upload failed: {attachment.name}", attachment=attachment.name
                ) from e
            uploaded.append(dataclasses.replace(attachment, data=url))
        return uploaded

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def shutdown(self) -> None:
        """Stop subscriptions and wait for queued writes."""
        self._close_subscriptions()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def get_status_display(self) -> Dict[str, Any]:
        return {
            **self.connection.get_status_display(),
            "pending_count": self.store.pending_count,
            "subscriptions": len(self._unsubscribers),
        }
