# =============================================================================
# tracker_core/offline/replica_store.py
# Local Replica Store - in-process source of truth for the four collections
# =============================================================================
"""
LocalReplicaStore - holds organizations, users, customers and plans in
memory, applies mutations, and persists the full snapshot to device storage
whenever the session is local-only.

Records applied without remote confirmation are tracked as pending until a
confirmed application of the same record arrives. Every mutation and every
snapshot replacement is published through the ChangeNotifier after the
store has been updated.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging

from tracker_core.errors import RecordValidationError
from tracker_core.models import (
    COLLECTIONS,
    ORGANIZATIONS,
    USERS,
    CUSTOMERS,
    PLANS,
    SYSTEM_ORG_ID,
    SYSTEM_ORG_NAME,
    Customer,
    Organization,
    Plan,
    User,
    UserRole,
    load_record,
)
from tracker_core.offline.connection_manager import ConnectionManager, SyncMode
from tracker_core.offline.local_database import LocalDatabase, get_local_database
from tracker_core.offline.notifier import ChangeEvent, ChangeNotifier, Observer, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of the four collections at one point in time."""
    organizations: Tuple[Organization, ...] = ()
    users: Tuple[User, ...] = ()
    customers: Tuple[Customer, ...] = ()
    plans: Tuple[Plan, ...] = ()

    def collection(self, name: str) -> tuple:
        return getattr(self, name)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {name: [r.to_dict() for r in self.collection(name)] for name in COLLECTIONS}


@dataclass
class Mutation:
    """
    A change to one record.

    kind:
        "add"     insert or replace the whole record
        "update"  merge ``updates`` (document keys) into an existing record
        "upsert"  merge the record's fields into an existing one, or insert it
    """
    kind: str
    collection: str
    record_id: str
    record: Any = None
    updates: Optional[Dict[str, Any]] = None

    @classmethod
    def add(cls, collection: str, record: Any) -> Mutation:
        return cls("add", collection, record.id, record=record)

    @classmethod
    def upsert(cls, collection: str, record: Any) -> Mutation:
        return cls("upsert", collection, record.id, record=record)

    @classmethod
    def update(cls, collection: str, record_id: str, updates: Dict[str, Any]) -> Mutation:
        return cls("update", collection, record_id, updates=dict(updates))


def _placeholder_admin() -> User:
    from tracker_core.auth.authentication import build_bootstrap_admin
    return build_bootstrap_admin()


class LocalReplicaStore:
    """
    Usage:
        store = LocalReplicaStore(LocalDatabase(path))
        store.load()
        store.apply_local(Mutation.add(CUSTOMERS, customer))
        unsubscribe = store.subscribe(lambda event: refresh())
    """

    SNAPSHOT_KEY = "sales_tracker_offline_data"

    def __init__(
        self,
        device: Optional[LocalDatabase] = None,
        connection: Optional[ConnectionManager] = None,
        notifier: Optional[ChangeNotifier] = None,
        bootstrap_admin: Optional[User] = None,
    ):
        self.device = device if device is not None else get_local_database()
        self.connection = connection or ConnectionManager()
        self.notifier = notifier or ChangeNotifier()
        self.bootstrap_admin = bootstrap_admin or _placeholder_admin()
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, Any]] = {c: {} for c in COLLECTIONS}
        self._pending: Dict[str, Set[str]] = {c: set() for c in COLLECTIONS}
        self._loaded = False

    # =========================================================================
    # MODE
    # =========================================================================

    @property
    def mode(self) -> SyncMode:
        return self.connection.mode

    @property
    def is_local_only(self) -> bool:
        return self.connection.is_local_only

    # =========================================================================
    # LOADING
    # =========================================================================

    def load(self) -> Snapshot:
        """
        Return the last known snapshot. Before any remote connection has been
        established, the first call reads it from device storage.
        """
        with self._lock:
            needs_device = not self._loaded and not self.connection.ever_connected
        if needs_device:
            self.load_from_device()
        return self.snapshot()

    def load_from_device(self) -> Snapshot:
        """Replace the in-memory state with the persisted snapshot, or a fresh seed."""
        with self._lock:
            seeded = False
            try:
                raw = self.device.get_blob(self.SNAPSHOT_KEY)
            except Exception as e:
                logger.error(f"Local data unreadable, seeding a fresh snapshot: {e}")
                raw = None

            if raw is None:
                seeded = True
                data, pending = self._empty()
            else:
                try:
                    data, pending = self._parse(raw)
                except (TypeError, ValueError, KeyError, AttributeError) as e:
                    logger.error(f"Corrupt local data, seeding a fresh snapshot: {e}")
                    seeded = True
                    data, pending = self._empty()

            self._data, self._pending = data, pending
            self._ensure_bootstrap_records()
            self._loaded = True
            if seeded:
                self.persist()
            snapshot = self.snapshot()

        self.notifier.publish(ChangeEvent("snapshot"))
        return snapshot

    @staticmethod
    def _empty() -> Tuple[Dict[str, Dict[str, Any]], Dict[str, Set[str]]]:
        return {c: {} for c in COLLECTIONS}, {c: set() for c in COLLECTIONS}

    def _parse(self, raw: Dict[str, Any]):
        data, pending = self._empty()
        for name in COLLECTIONS:
            for doc in raw.get(name) or []:
                record = load_record(name, doc)
                data[name][record.id] = record
        for name, ids in (raw.get("pending") or {}).items():
            if name in pending:
                pending[name] = {rid for rid in ids if rid in data[name]}
        return data, pending

    def _ensure_bootstrap_records(self) -> None:
        """System organization and bootstrap super-admin; never marked pending."""
        orgs = self._data[ORGANIZATIONS]
        if SYSTEM_ORG_ID not in orgs:
            orgs[SYSTEM_ORG_ID] = Organization(
                id=SYSTEM_ORG_ID, name=SYSTEM_ORG_NAME, is_approved=True
            )

        admin = self.bootstrap_admin
        users = self._data[USERS]
        exists = any(
            u.role == UserRole.SUPER_ADMIN and (u.id == admin.id or (admin.email and u.email == admin.email))
            for u in users.values()
        )
        if not exists:
            users[admin.id] = admin

    # =========================================================================
    # READS
    # =========================================================================

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(**{c: tuple(self._data[c].values()) for c in COLLECTIONS})

    def get_organizations(self) -> List[Organization]:
        with self._lock:
            return list(self._data[ORGANIZATIONS].values())

    def get_users(self) -> List[User]:
        with self._lock:
            return list(self._data[USERS].values())

    def get_customers(self) -> List[Customer]:
        with self._lock:
            return list(self._data[CUSTOMERS].values())

    def get_plans(self) -> List[Plan]:
        with self._lock:
            return list(self._data[PLANS].values())

    def get(self, collection: str, record_id: str):
        with self._lock:
            return self._collection(collection).get(record_id)

    def find_organization_by_name(self, name: str) -> Optional[Organization]:
        wanted = name.strip().lower()
        with self._lock:
            for org in self._data[ORGANIZATIONS].values():
                if org.name.strip().lower() == wanted:
                    return org
        return None

    def is_confirmed(self, collection: str, record_id: str) -> bool:
        """True when the record exists and is not waiting for remote confirmation."""
        with self._lock:
            return record_id in self._collection(collection) and record_id not in self._pending[collection]

    def pending_ids(self, collection: str) -> Set[str]:
        with self._lock:
            return set(self._pending[collection])

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(len(ids) for ids in self._pending.values())

    def _collection(self, name: str) -> Dict[str, Any]:
        try:
            return self._data[name]
        except KeyError:
            raise RecordValidationError(f"Unknown collection: {name}", collection=name) from None

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def apply_local(self, mutation: Mutation, confirmed: bool = False):
        """
        Apply a mutation immediately.

        Args:
            mutation: The change to apply
            confirmed: Whether the remote store already holds this change

        Returns:
            The record as stored after the mutation
        """
        with self._lock:
            record = self._apply(mutation)
            pending = self._pending[mutation.collection]
            if confirmed:
                pending.discard(mutation.record_id)
            else:
                pending.add(mutation.record_id)
            if self.is_local_only:
                self.persist()

        self.notifier.publish(ChangeEvent(mutation.kind, mutation.collection, mutation.record_id))
        return record

    def _apply(self, mutation: Mutation):
        items = self._collection(mutation.collection)
        existing = items.get(mutation.record_id)

        if mutation.kind == "add":
            record = mutation.record
        elif mutation.kind == "upsert":
            record = existing.merged(mutation.record.to_dict()) if existing else mutation.record
        elif mutation.kind == "update":
            if existing is None:
                raise RecordValidationError(
                    "Cannot update a record that does not exist",
                    collection=mutation.collection,
                    record_id=mutation.record_id,
                )
            record = existing.merged(mutation.updates or {})
        else:
            raise RecordValidationError(f"Unknown mutation kind: {mutation.kind}")

        items[mutation.record_id] = record
        return record

    def replace_collection(self, collection: str, documents: Iterable[Dict[str, Any]]) -> None:
        """Fold an authoritative remote snapshot of one collection into the replica."""
        with self._lock:
            self._replace_locked(collection, documents)
            self._ensure_bootstrap_records()
            if self.is_local_only:
                self.persist()
        self.notifier.publish(ChangeEvent("snapshot", collection))

    def replace_snapshot(self, documents: Dict[str, Iterable[Dict[str, Any]]]) -> Snapshot:
        """Fold remote snapshots of several collections in one step."""
        with self._lock:
            for name in COLLECTIONS:
                if name in documents:
                    self._replace_locked(name, documents[name])
            self._ensure_bootstrap_records()
            self._loaded = True
            if self.is_local_only:
                self.persist()
            snapshot = self.snapshot()
        self.notifier.publish(ChangeEvent("snapshot"))
        return snapshot

    def _replace_locked(self, collection: str, documents: Iterable[Dict[str, Any]]) -> None:
        """
        Remote fields win over local fields. Pending local records the remote
        snapshot does not contain yet are kept.
        """
        current = self._collection(collection)
        replaced: Dict[str, Any] = {}
        for doc in documents:
            try:
                existing = current.get(doc.get("id"))
                record = existing.merged(doc) if existing is not None else load_record(collection, doc)
            except (TypeError, ValueError, KeyError, AttributeError) as e:
                logger.warning(f"Skipping malformed {collection} document: {e}")
                continue
            replaced[record.id] = record

        for record_id in self._pending[collection]:
            if record_id not in replaced and record_id in current:
                replaced[record_id] = current[record_id]

        self._data[collection] = replaced

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def persist(self) -> bool:
        """Write the full snapshot to device storage. Best-effort."""
        with self._lock:
            payload = self.snapshot().to_dict()
            payload["pending"] = {c: sorted(ids) for c, ids in self._pending.items()}
        try:
            self.device.set_blob(self.SNAPSHOT_KEY, payload)
            return True
        except Exception as e:
            logger.error(f"Failed to save local data: {e}")
            return False

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, observer: Observer) -> Subscription:
        """Register an observer; call the returned handle to deregister."""
        return self.notifier.subscribe(observer)
