# =============================================================================
# tracker_core/offline/unified_data_service.py
# Unified Data Service - Single API for Connected/Degraded Operations
# =============================================================================
"""
UnifiedDataService - The primary API for all data operations.

This service wires the sync core together and hides the session mode:
- Connected mode: writes commit to the remote store, snapshots stream in
- Degraded mode: writes persist to the device, nothing leaves the device
- Changes by field users are relayed over the email channel when the
  remote store did not confirm them

Usage:
------
from tracker_core.offline import get_data_service

service = get_data_service()

result = service.add_customer(customer, acting_user=user)
if not result.confirmed:
    ...saved on this device only

print(f"Online: {service.is_online}")
print(f"Pending sync: {service.pending_sync_count}")
"""

from __future__ import annotations
import threading
from typing import Any, Dict, FrozenSet, List, Optional
import logging

from tracker_core.auth.authentication import build_bootstrap_admin, ensure_role
from tracker_core.config import Settings, load_settings
from tracker_core.data.remote_store import BlobStorage, RemoteDocumentStore
from tracker_core.errors import RecordValidationError, RemoteUnavailableError, handle_error, safe_execute
from tracker_core.logging import setup_logging
from tracker_core.models import (
    CUSTOMERS,
    ORGANIZATIONS,
    PLANS,
    USERS,
    Attachment,
    Customer,
    Organization,
    Plan,
    SyncPacket,
    UpdateLogEntry,
    User,
    UserHierarchy,
    UserRole,
    normalize_email,
)
from tracker_core.offline.connection_manager import ConnectionManager, SyncMode
from tracker_core.offline.local_database import LocalDatabase, get_local_database
from tracker_core.offline.notifier import ChangeNotifier, Observer, Subscription
from tracker_core.offline.replica_store import LocalReplicaStore
from tracker_core.offline.sync_engine import RemoteSyncEngine, WriteResult

logger = logging.getLogger(__name__)


class UnifiedDataService:
    """
    Unified data service providing a single API for connected/degraded operations.

    Collaborators may be injected (tests, demos); anything left out is built
    lazily from settings.
    """

    _instance: Optional[UnifiedDataService] = None
    _lock = threading.Lock()

    def __init__(
        self,
        settings: Optional[Settings] = None,
        device: Optional[LocalDatabase] = None,
        remote: Optional[RemoteDocumentStore] = None,
        blobs: Optional[BlobStorage] = None,
        mail_channel=None,
    ):
        self.settings = settings or load_settings()
        self._device = device
        self._remote = remote
        self._blobs = blobs
        self._mail_channel = mail_channel
        self._mail_channel_built = mail_channel is not None
        self._store: Optional[LocalReplicaStore] = None
        self._engine: Optional[RemoteSyncEngine] = None
        self._initialized = False

    @classmethod
    def get_instance(cls) -> UnifiedDataService:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = UnifiedDataService()
        return cls._instance

    # =========================================================================
    # LAZY LOADING OF DEPENDENCIES
    # =========================================================================

    def _get_device(self) -> LocalDatabase:
        if self._device is None:
            self._device = get_local_database(self.settings.local_db_path)
        return self._device

    @property
    def store(self) -> LocalReplicaStore:
        if self._store is None:
            self._store = LocalReplicaStore(
                device=self._get_device(),
                connection=ConnectionManager(),
                notifier=ChangeNotifier(),
                bootstrap_admin=build_bootstrap_admin(self.settings),
            )
        return self._store

    @property
    def engine(self) -> RemoteSyncEngine:
        if self._engine is None:
            if self._remote is None and self.settings.has_remote_credentials:
                self._build_supabase_backends()
            self._engine = RemoteSyncEngine(
                self.store,
                remote=self._remote,
                blobs=self._blobs,
                live_updates=self.settings.live_updates,
            )
        return self._engine

    def _build_supabase_backends(self) -> None:
        try:
            from tracker_core.data.supabase_client import (
                SupabaseBlobStorage,
                SupabaseDocumentStore,
                get_supabase_client,
            )
            client = get_supabase_client(self.settings)
            self._remote = SupabaseDocumentStore(client, poll_interval=self.settings.poll_interval)
            self._blobs = self._blobs or SupabaseBlobStorage(client, bucket=self.settings.storage_bucket)
        except Exception as e:
            handle_error(e, context="Supabase client unavailable", log_traceback=False)
            self._remote = None

    @property
    def mail_channel(self):
        """Email channel, or None when no sync secret / client secrets are configured."""
        if not self._mail_channel_built:
            self._mail_channel_built = True
            if self.settings.has_mail_channel:
                from tracker_core.sync.envelope import EnvelopeCodec
                from tracker_core.sync.gmail_client import GmailTransport
                from tracker_core.sync.mail_channel import EmailTransportChannel
                self._mail_channel = EmailTransportChannel(
                    GmailTransport(self.settings.gmail_client_secrets, timeout=self.settings.remote_timeout),
                    EnvelopeCodec(self.settings.sync_secret),
                    page_size=self.settings.mail_page_size,
                    device=self._get_device(),
                )
        return self._mail_channel

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def mode(self) -> SyncMode:
        return self.store.mode

    @property
    def is_online(self) -> bool:
        """True while the remote store is authoritative."""
        return self.store.connection.is_connected

    @property
    def pending_sync_count(self) -> int:
        """Records applied on this device and not yet confirmed remotely."""
        return self.store.pending_count

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self) -> SyncMode:
        """
        Connect (or fall back to device storage). A failed connection is
        logged; the service stays usable in degraded mode.
        """
        if self._initialized:
            return self.mode
        try:
            self.engine.init()
        except RemoteUnavailableError as e:
            logger.warning(f"Starting in local-only mode: {e.message}")
        self._initialized = True
        logger.info(f"UnifiedDataService initialized. Mode: {self.mode.value}")
        return self.mode

    def reconnect(self) -> SyncMode:
        """Explicitly retry the remote connection of a degraded session."""
        if not self._initialized:
            return self.initialize()
        return self.engine.init(force=True)

    # =========================================================================
    # READS
    # =========================================================================

    def get_organizations(self) -> List[Organization]:
        return self.store.get_organizations()

    def get_users(self, organization_id: Optional[str] = None) -> List[User]:
        users = self.store.get_users()
        if organization_id is not None:
            users = [u for u in users if u.organization_id == organization_id]
        return users

    def get_customers(self, organization_id: Optional[str] = None) -> List[Customer]:
        customers = self.store.get_customers()
        if organization_id is not None:
            customers = [c for c in customers if c.organization_id == organization_id]
        return customers

    def get_plans(self, organization_id: Optional[str] = None,
                  customer_id: Optional[str] = None) -> List[Plan]:
        plans = self.store.get_plans()
        if organization_id is not None:
            plans = [p for p in plans if p.organization_id == organization_id]
        if customer_id is not None:
            plans = [p for p in plans if p.customer_id == customer_id]
        return plans

    def _require(self, collection: str, record_id: str):
        record = self.store.get(collection, record_id)
        if record is None:
            raise RecordValidationError(
                f"No such record in {collection}", collection=collection, record_id=record_id
            )
        return record

    # =========================================================================
    # ORGANIZATIONS & USERS
    # =========================================================================

    def add_organization(self, organization: Organization) -> WriteResult:
        existing = self.store.find_organization_by_name(organization.name)
        if existing is not None and existing.id != organization.id:
            raise RecordValidationError(
                "Organization name already registered",
                collection=ORGANIZATIONS,
                record_id=organization.id,
                field="name",
            )
        return self.engine.write(ORGANIZATIONS, organization)

    def approve_organization(self, organization_id: str, acting_user: Optional[User]) -> WriteResult:
        ensure_role(acting_user, UserRole.SUPER_ADMIN)
        self._require(ORGANIZATIONS, organization_id)
        logger.info(f"Organization {organization_id} approved by {acting_user.email}")
        return self.engine.update(ORGANIZATIONS, organization_id, {"isApproved": True})

    def add_user(self, user: User, acting_user: Optional[User] = None) -> WriteResult:
        self._require(ORGANIZATIONS, user.organization_id)
        for other in self.get_users(user.organization_id):
            if other.id != user.id and normalize_email(other.email) == normalize_email(user.email):
                raise RecordValidationError(
                    "Email already registered in this organization",
                    collection=USERS,
                    record_id=user.id,
                    field="email",
                )
        result = self.engine.write(USERS, user)
        self._maybe_broadcast(result, acting_user)
        return result

    def update_user_hierarchy(self, user_id: str, hierarchy: UserHierarchy,
                              acting_user: Optional[User] = None) -> WriteResult:
        self._require(USERS, user_id)
        result = self.engine.update(USERS, user_id, {"hierarchy": hierarchy.to_dict()})
        self._maybe_broadcast(result, acting_user)
        return result

    # =========================================================================
    # CUSTOMERS & PLANS
    # =========================================================================

    def add_customer(self, customer: Customer, acting_user: Optional[User] = None) -> WriteResult:
        self._require(ORGANIZATIONS, customer.organization_id)
        result = self.engine.write(CUSTOMERS, customer)
        self._maybe_broadcast(result, acting_user)
        return result

    def add_plan(self, plan: Plan, acting_user: Optional[User] = None) -> WriteResult:
        customer = self._require(CUSTOMERS, plan.customer_id)
        if customer.organization_id != plan.organization_id:
            raise RecordValidationError(
                "Plan and customer belong to different organizations",
                collection=PLANS,
                record_id=plan.id,
                field="organizationId",
            )
        result = self.engine.write(PLANS, plan)
        self._maybe_broadcast(result, acting_user)
        return result

    def update_plan_status(self, plan_id: str, status: str, acting_user: User) -> WriteResult:
        """Set the plan status and append an entry to its status log."""
        plan = self._require(PLANS, plan_id)
        entry = UpdateLogEntry(status=status, updated_by=acting_user.name, updated_by_id=acting_user.id)
        log = [e.to_dict() for e in plan.update_status_log] + [entry.to_dict()]
        result = self.engine.update(PLANS, plan_id, {"status": status, "updateStatusLog": log})
        self._maybe_broadcast(result, acting_user)
        return result

    def add_plan_attachments(self, plan_id: str, attachments: List[Attachment],
                             acting_user: Optional[User] = None) -> WriteResult:
        plan = self._require(PLANS, plan_id)
        combined = [a.to_dict() for a in plan.attachments] + [a.to_dict() for a in attachments]
        result = self.engine.update(PLANS, plan_id, {"attachments": combined})
        self._maybe_broadcast(result, acting_user)
        return result

    # =========================================================================
    # EMAIL CHANNEL
    # =========================================================================

    def authenticate_mail(self) -> bool:
        channel = self.mail_channel
        return channel.authenticate() if channel is not None else False

    def broadcast_change(self, record: Any, acting_user: User) -> FrozenSet[str]:
        """
        Send a record to the acting user's hierarchy.

        Raises:
            AuthRequiredError: if the mail channel has not been authenticated
        """
        channel = self.mail_channel
        if channel is None:
            logger.debug("No mail channel configured; broadcast skipped")
            return frozenset()
        return channel.broadcast(SyncPacket.build(record, acting_user.email), acting_user)

    def _maybe_broadcast(self, result: WriteResult, acting_user: Optional[User]) -> None:
        channel = self.mail_channel
        if channel is None or acting_user is None or not result.applied:
            return
        if result.confirmed and not self.settings.mail_broadcast_always:
            return
        if not channel.is_authenticated:
            logger.debug("Mail channel not authenticated; change not relayed")
            return
        safe_execute(
            self.broadcast_change, result.record, acting_user,
            default=frozenset(),
            context="Email broadcast",
        )

    def poll_email(self, limit: Optional[int] = None) -> int:
        """
        Merge changes relayed by other devices.

        Returns:
            Number of records merged into the store
        """
        channel = self.mail_channel
        if channel is None:
            return 0
        packets = channel.fetch_recent(limit)
        merged = channel.merge_into(self.store, packets)
        if merged:
            logger.info(f"Merged {merged} records from email")
        return merged

    # =========================================================================
    # OBSERVERS, STATUS & LIFECYCLE
    # =========================================================================

    def subscribe(self, observer: Observer) -> Subscription:
        return self.store.subscribe(observer)

    def get_status(self) -> Dict[str, Any]:
        """Status information for UI display."""
        channel = self.mail_channel
        return {
            "sync": self.engine.get_status_display(),
            "is_online": self.is_online,
            "pending_sync": self.pending_sync_count,
            "mail_authenticated": channel.is_authenticated if channel is not None else False,
        }

    def shutdown(self) -> None:
        """Stop subscriptions, drain queued writes and close device storage."""
        try:
            if self._engine is not None:
                self._engine.shutdown()
            if self._device is not None:
                self._device.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


# Singleton accessor
_data_service: Optional[UnifiedDataService] = None


def get_data_service() -> UnifiedDataService:
    """
    Get the global UnifiedDataService instance, initialized.

    Usage:
        from tracker_core.offline import get_data_service

        service = get_data_service()
        customers = service.get_customers(user.organization_id)
    """
    global _data_service
    if _data_service is None:
        _data_service = UnifiedDataService.get_instance()
        setup_logging(_data_service.settings.log_level)
        _data_service.initialize()
    return _data_service
