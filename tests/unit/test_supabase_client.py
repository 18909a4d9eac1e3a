# =============================================================================
# tests/unit/test_supabase_client.py
# Unit Tests for the Supabase Document Store and Blob Storage
# =============================================================================

import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from tracker_core.config import Settings
from tracker_core.data.remote_store import sanitize_document
from tracker_core.data.supabase_client import (
    SupabaseBlobStorage,
    SupabaseDocumentStore,
    get_supabase_client,
)
from tracker_core.errors import ConfigMissingError


def table_returning(*pages):
    """Mock client whose select(...).order(...).range(...).execute() yields pages in turn"""
    client = MagicMock()
    query = client.table.return_value.select.return_value.order.return_value.range.return_value
    query.execute.side_effect = [MagicMock(data=page) for page in pages]
    return client


class TestSupabaseDocumentStore:
    """Table-per-collection document store"""

    def test_fetch_all_flattens_rows(self):
        client = table_returning([{"id": "c1", "data": {"name": "Bolt Works"}}])

        docs = SupabaseDocumentStore(client).fetch_all("customers")

        assert docs == [{"name": "Bolt Works", "id": "c1"}]
        client.table.assert_called_with("customers")

    def test_fetch_all_pages_past_batch_size(self):
        first = [{"id": f"c{i}", "data": {}} for i in range(SupabaseDocumentStore.BATCH_SIZE)]
        client = table_returning(first, [{"id": "last", "data": {}}])

        docs = SupabaseDocumentStore(client).fetch_all("customers")

        assert len(docs) == SupabaseDocumentStore.BATCH_SIZE + 1
        range_calls = client.table.return_value.select.return_value.order.return_value.range.call_args_list
        assert range_calls[1].args == (1000, 1999)

    def test_upsert_wraps_document(self):
        client = MagicMock()

        SupabaseDocumentStore(client).upsert("plans", "p1", {"status": "Open"})

        row = client.table.return_value.upsert.call_args.args[0]
        assert row["id"] == "p1"
        assert row["data"] == {"status": "Open"}
        assert "updated_at" in row

    def test_update_merges_into_stored_document(self):
        client = MagicMock()
        select = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        select.execute.return_value = MagicMock(data=[{"data": {"status": "Open", "name": "x"}}])

        SupabaseDocumentStore(client).update("plans", "p1", {"status": "Won"})

        payload = client.table.return_value.update.call_args.args[0]
        assert payload["data"] == {"status": "Won", "name": "x"}

    def test_update_of_missing_document_raises(self):
        client = MagicMock()
        select = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        select.execute.return_value = MagicMock(data=[])

        with pytest.raises(KeyError):
            SupabaseDocumentStore(client).update("plans", "p1", {"status": "Won"})

    def test_failed_poll_reports_error(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.order.return_value.range.return_value
        query.execute.side_effect = ConnectionError("offline")
        errors = []

        unsubscribe = SupabaseDocumentStore(client, poll_interval=0.01).subscribe(
            "plans", lambda docs: None, errors.append
        )
        try:
            deadline = time.time() + 2
            while not errors and time.time() < deadline:
                time.sleep(0.01)
        finally:
            unsubscribe()

        assert isinstance(errors[0], ConnectionError)


class TestSupabaseBlobStorage:
    """Bucket uploads"""

    def test_upload_returns_public_url(self):
        client = MagicMock()
        bucket = client.storage.from_.return_value
        bucket.get_public_url.return_value = "https://demo.supabase.co/storage/v1/object/public/attachments/a.png"

        url = SupabaseBlobStorage(client).upload("a.png", b"png", "image/png")

        client.storage.from_.assert_called_with("attachments")
        bucket.upload.assert_called_once_with(path="a.png", file=b"png", file_options={"content-type": "image/png"})
        assert url.endswith("/attachments/a.png")


class TestClientFactory:
    def test_missing_credentials_raise(self):
        with pytest.raises(ConfigMissingError):
            get_supabase_client(Settings())


class TestSanitizeDocument:
    """Normalization of documents read from the remote store"""

    def test_datetimes_become_iso_strings(self):
        doc = sanitize_document({"createdAt": datetime(2024, 1, 2, 3, 4, 5)})

        assert doc == {"createdAt": "2024-01-02T03:04:05"}

    def test_references_become_identifiers(self):
        ref = MagicMock(spec=["id", "path"])
        ref.id = "org_1"
        ref.path = "organizations/org_1"

        doc = sanitize_document({"org": ref, "owner": {"$ref": "users/u1"}, "tags": ["a", 1]})

        assert doc == {"org": "org_1", "owner": "u1", "tags": ["a", 1]}
