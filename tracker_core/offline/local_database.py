# =============================================================================
# tracker_core/offline/local_database.py
# Local SQLite Device Storage
# =============================================================================
"""
LocalDatabase - SQLite-backed device persistence.

The replica keeps its whole snapshot as one named blob; the email channel
keeps its seen-message list the same way. Reads and writes are synchronous
and best-effort from the caller's point of view.

Features:
- Thread-local connections
- Transaction context manager
- Named blob get/set with JSON encoding
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
import logging

logger = logging.getLogger(__name__)


class LocalDatabase:
    """Device-local key/blob store."""

    DEFAULT_DB_PATH = Path("local_data") / "sales_tracker.db"

    SCHEMA = {
        "app_blobs": """
            CREATE TABLE IF NOT EXISTS app_blobs (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with self._connections_lock:
                self._connections.append(conn)
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    # =========================================================================
    # NAMED BLOBS
    # =========================================================================

    def get_blob(self, key: str, default: Any = None) -> Any:
        """
        Read a named blob.

        Raises:
            sqlite3.Error: if the database cannot be read
        """
        self.initialize()
        row = self._get_connection().execute(
            "SELECT value FROM app_blobs WHERE key = ?", [key]
        ).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set_blob(self, key: str, value: Any) -> None:
        """Write a named blob, replacing any previous value."""
        self.initialize()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_blobs (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(value), datetime.now().isoformat()],
            )

    def close(self) -> None:
        """Close the connections opened by every thread (writer, pollers, caller)."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.debug(f"Error closing database connection: {e}")
        self._local = threading.local()


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database(db_path: Optional[Path] = None) -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        _local_database = LocalDatabase.get_instance(db_path)
    return _local_database
