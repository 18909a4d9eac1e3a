# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import base64
import re
from typing import Dict, List

import bcrypt
import pytest

from tracker_core.config import Settings
from tracker_core.data.remote_store import MockBlobStorage, MockDocumentStore
from tracker_core.models import (
    SYSTEM_ORG_ID,
    SYSTEM_ORG_NAME,
    Customer,
    Organization,
    ProjectPlan,
    User,
    UserHierarchy,
    UserRole,
)
from tracker_core.offline.connection_manager import ConnectionManager
from tracker_core.offline.local_database import LocalDatabase
from tracker_core.offline.notifier import ChangeNotifier
from tracker_core.offline.replica_store import LocalReplicaStore
from tracker_core.offline.sync_engine import RemoteSyncEngine
from tracker_core.sync.envelope import EnvelopeCodec
from tracker_core.sync.gmail_client import MailTransport
from tracker_core.sync.mail_channel import EmailTransportChannel

SUPER_ADMIN_EMAIL = "root@tracker.test"
SUPER_ADMIN_PASSWORD = "root-pass-123"
SYNC_SECRET = "test-sync-secret"


def fast_hash(password: str) -> str:
    """bcrypt hash with the minimum cost factor"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()


# =============================================================================
# FAKE MAIL TRANSPORT
# =============================================================================

class FakeMailTransport(MailTransport):
    """
    In-memory mailbox shared by every device that uses it.

    Messages are stored in the listing format GmailTransport returns.
    """

    def __init__(self, mailbox: List[Dict] = None, grant: bool = True):
        self.mailbox = mailbox if mailbox is not None else []
        self.grant = grant
        self.token_requests = 0
        self.fail_sends = False
        self.fail_lists = False

    def request_token(self) -> bool:
        self.token_requests += 1
        return self.grant

    def send_message(self, to, bcc, subject, body):
        if self.fail_sends:
            raise ConnectionError("SMTP relay unavailable")
        message_id = f"msg{len(self.mailbox) + 1}"
        self.mailbox.append({
            "id": message_id,
            "to": to,
            "bcc": list(bcc),
            "subject": subject,
            "snippet": body[:40],
            "payload": {
                "mimeType": "text/plain",
                "body": {"data": base64.urlsafe_b64encode(body.encode()).decode().rstrip("=")},
            },
        })
        return message_id

    def list_messages(self, query, max_results):
        if self.fail_lists:
            raise ConnectionError("Gmail request failed (messages): timeout")
        match = re.search(r'subject:"([^"]+)"', query)
        tag = match.group(1) if match else ""
        tagged = [m for m in reversed(self.mailbox) if tag in (m.get("subject") or "")]
        return tagged[:max_results]


# =============================================================================
# SAMPLE RECORD FIXTURES
# =============================================================================

@pytest.fixture
def bootstrap_admin():
    """Provisioned super-admin of the system organization"""
    return User(
        id="super_admin",
        email=SUPER_ADMIN_EMAIL,
        organization_id=SYSTEM_ORG_ID,
        name="Super Admin",
        password=fast_hash(SUPER_ADMIN_PASSWORD),
        role=UserRole.SUPER_ADMIN,
        organization_name=SYSTEM_ORG_NAME,
        is_approved=True,
    )


@pytest.fixture
def admin_credentials():
    """Login address and password of the provisioned super-admin"""
    return SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD


@pytest.fixture
def acme_org():
    return Organization(id="org_acme", name="Acme", admin_email="admin@acme.com", is_approved=True)


@pytest.fixture
def rsm_user():
    """Regional manager with one engineer and one field user below"""
    return User(
        id="user_rsm",
        email="rsm@acme.com",
        organization_id="org_acme",
        name="Rita Manager",
        password=fast_hash("rsm-pass"),
        role=UserRole.RSM,
        organization_name="Acme",
        is_approved=True,
        hierarchy=UserHierarchy(se_emails=["se@acme.com"], dse_emails=["dse@acme.com"]),
    )


@pytest.fixture
def se_user():
    """Sales engineer reporting to the RSM"""
    return User(
        id="user_se",
        email="se@acme.com",
        organization_id="org_acme",
        name="Sam Engineer",
        password=fast_hash("se-pass"),
        role=UserRole.SALES_ENG,
        organization_name="Acme",
        is_approved=True,
        hierarchy=UserHierarchy(rsm_email="rsm@acme.com", dse_emails=["dse@acme.com"]),
    )


@pytest.fixture
def sample_customer():
    return Customer(
        id="cust_1",
        organization_id="org_acme",
        created_by="user_se",
        name="Bolt Works",
        address="12 Foundry Road",
        pin_code="600001",
        contact_person="K. Raman",
        business_sector="Automotive",
        own_share=20.0,
        annual_potential=150.0,
    )


@pytest.fixture
def sample_plan():
    return ProjectPlan(
        id="plan_1",
        customer_id="cust_1",
        organization_id="org_acme",
        project_name="Axle line",
        machine_type="VMC",
        status="Open",
        created_by="user_se",
        value_lakhs=12.5,
    )


# =============================================================================
# SYNC CORE FIXTURES
# =============================================================================

@pytest.fixture
def device(tmp_path):
    """Temporary SQLite device storage"""
    db = LocalDatabase(tmp_path / "device.db")
    yield db
    db.close()


@pytest.fixture
def store(device, bootstrap_admin):
    return LocalReplicaStore(
        device=device,
        connection=ConnectionManager(),
        notifier=ChangeNotifier(),
        bootstrap_admin=bootstrap_admin,
    )


@pytest.fixture
def remote():
    """In-memory remote document store with failure injection"""
    return MockDocumentStore()


@pytest.fixture
def blobs():
    return MockBlobStorage()


@pytest.fixture
def engine(store, remote, blobs):
    engine = RemoteSyncEngine(store, remote=remote, blobs=blobs)
    yield engine
    engine.shutdown()


@pytest.fixture
def mailbox():
    """Mailbox contents shared by every fake transport in a test"""
    return []


@pytest.fixture
def make_transport(mailbox):
    """Factory for fake transports on the shared mailbox"""
    return lambda grant=True: FakeMailTransport(mailbox, grant=grant)


@pytest.fixture
def transport(make_transport):
    return make_transport()


@pytest.fixture
def codec():
    return EnvelopeCodec(SYNC_SECRET)


@pytest.fixture
def channel(transport, codec, device):
    return EmailTransportChannel(transport, codec, page_size=50, device=device)


@pytest.fixture
def settings(tmp_path):
    return Settings(local_db_path=tmp_path / "device.db", sync_secret=SYNC_SECRET)


@pytest.fixture
def service(settings, device, remote, blobs, channel):
    """Unified data service over the mock backends"""
    from tracker_core.offline.unified_data_service import UnifiedDataService

    service = UnifiedDataService(
        settings=settings,
        device=device,
        remote=remote,
        blobs=blobs,
        mail_channel=channel,
    )
    service.settings.bootstrap_admin_email = SUPER_ADMIN_EMAIL
    service.settings.bootstrap_admin_password_hash = fast_hash(SUPER_ADMIN_PASSWORD)
    yield service
    if service._engine is not None:
        service._engine.shutdown()
