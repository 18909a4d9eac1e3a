# =============================================================================
# tracker_core/data/supabase_client.py
# Supabase-backed Remote Document Store and Blob Storage
# Each collection is a table:  id text primary key, data jsonb, updated_at timestamptz
# =============================================================================

from __future__ import annotations
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from supabase import Client, ClientOptions, create_client

from tracker_core.config import Settings
from tracker_core.data.remote_store import (
    BlobStorage,
    ErrorCallback,
    RemoteDocumentStore,
    SnapshotCallback,
    Unsubscribe,
)
from tracker_core.errors import ConfigMissingError

logger = logging.getLogger(__name__)


def get_supabase_client(settings: Settings) -> Client:
    """
    Create a Supabase client from settings.

    Remote calls are bounded by ``settings.remote_timeout``; a timeout
    surfaces as an exception like any other remote failure.

    Raises:
        ConfigMissingError: if URL or key is missing
    """
    if not settings.has_remote_credentials:
        raise ConfigMissingError(
            "Supabase credentials not found. Set SUPABASE_URL and SUPABASE_KEY "
            "or add a [supabase] section to .streamlit/secrets.toml",
            config_key="SUPABASE_URL",
        )

    options = ClientOptions(
        postgrest_client_timeout=settings.remote_timeout,
        storage_client_timeout=int(settings.remote_timeout),
    )
    return create_client(settings.supabase_url, settings.supabase_key, options=options)


class _PollingSubscription:
    """Background poller delivering a collection snapshot whenever it changes."""

    def __init__(self, store: SupabaseDocumentStore, collection: str,
                 on_snapshot: SnapshotCallback, on_error: ErrorCallback,
                 interval: float, initial: Optional[List[Dict[str, Any]]] = None):
        self._store = store
        self._collection = collection
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._interval = interval
        self._last = initial
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name=f"RemoteSubscription-{collection}",
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _loop(self) -> None:
        while not self._stop.wait(timeout=self._interval):
            try:
                docs = self._store.fetch_all(self._collection)
            except Exception as e:
                logger.warning(f"Subscription to {self._collection} failed: {e}")
                self._stop.set()
                self._on_error(e)
                return

            if docs != self._last:
                self._last = docs
                try:
                    self._on_snapshot(docs)
                except Exception as e:
                    logger.error(f"Error delivering {self._collection} snapshot: {e}")


class SupabaseDocumentStore(RemoteDocumentStore):
    """
    Supabase implementation of the remote document store.

    Live updates are delivered by polling each subscribed table every
    ``poll_interval`` seconds.
    """

    BATCH_SIZE = 1000

    def __init__(self, client: Client, poll_interval: float = 15.0):
        self.client = client
        self.poll_interval = poll_interval

    def fetch_all(self, collection: str) -> List[Dict[str, Any]]:
        """Fetch every document, paging past the 1000 row response limit."""
        rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            response = (
                self.client.table(collection)
                .select("id, data")
                .order("id")
                .range(offset, offset + self.BATCH_SIZE - 1)
                .execute()
            )
            batch = response.data or []
            rows.extend(batch)
            if len(batch) < self.BATCH_SIZE:
                break
            offset += self.BATCH_SIZE

        return [{**(row.get("data") or {}), "id": row["id"]} for row in rows]

    def subscribe(self, collection: str, on_snapshot: SnapshotCallback,
                  on_error: ErrorCallback) -> Unsubscribe:
        subscription = _PollingSubscription(
            self, collection, on_snapshot, on_error, self.poll_interval
        )
        subscription.start()
        return subscription.stop

    def upsert(self, collection: str, record_id: str, document: Dict[str, Any]) -> None:
        self.client.table(collection).upsert({
            "id": record_id,
            "data": document,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).execute()

    def update(self, collection: str, record_id: str, updates: Dict[str, Any]) -> None:
        response = (
            self.client.table(collection)
            .select("data")
            .eq("id", record_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            raise KeyError(f"{collection}/{record_id} does not exist")

        merged = {**(response.data[0].get("data") or {}), **updates}
        (
            self.client.table(collection)
            .update({"data": merged, "updated_at": datetime.now(timezone.utc).isoformat()})
            .eq("id", record_id)
            .execute()
        )


class SupabaseBlobStorage(BlobStorage):
    """Attachments in a Supabase Storage bucket, served by public URL."""

    def __init__(self, client: Client, bucket: str = "attachments"):
        self.client = client
        self.bucket = bucket

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        storage = self.client.storage.from_(self.bucket)
        storage.upload(path=path, file=data, file_options={"content-type": content_type})
        return storage.get_public_url(path)
