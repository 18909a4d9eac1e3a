# =============================================================================
# tracker_core/models/records.py
# Record Types for the Four Synchronized Collections
# =============================================================================
"""
Dataclasses for organizations, users, customers and plans, plus the
SyncPacket used by the email channel.

Every record serializes to the camelCase document layout kept in the remote
store and in the device snapshot (``organizationId``, ``isApproved``, ...).
Document keys a record type does not know are kept in ``extra`` and written
back unchanged, so a document survives a load/save cycle intact.
"""

from __future__ import annotations
import copy
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Type

# Collection names (shared by the remote store, the replica and the snapshot)
ORGANIZATIONS = "organizations"
USERS = "users"
CUSTOMERS = "customers"
PLANS = "plans"
COLLECTIONS = (ORGANIZATIONS, USERS, CUSTOMERS, PLANS)

SYSTEM_ORG_ID = "system_global"
SYSTEM_ORG_NAME = "System"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    """Random record identifier such as ``org_3f9a1c2b7``."""
    return f"{prefix}_{uuid.uuid4().hex[:9]}"


def normalize_email(value: Optional[str]) -> str:
    """Comparison form of an address: trimmed and case-folded."""
    return (value or "").strip().lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _dump(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, WireRecord):
        return value.to_dict()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """User roles, highest authority first."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    RSM = "RSM"              # Regional sales manager
    SALES_ENG = "SALES_ENG"  # Sales engineer
    DEALER = "DEALER"
    DSE = "DSE"              # Field sales


class PlanType(str, Enum):
    NEW_PROJECT = "NEW PROJECT"
    CONVERSION = "CONVERSION"
    RETENTION = "RETENTION"


class AttachmentKind(str, Enum):
    PHOTO = "photo"
    DOCUMENT = "document"


class PacketType(str, Enum):
    PLAN = "PLAN"
    CUSTOMER = "CUSTOMER"
    USER_REG = "USER_REG"


# =============================================================================
# SERIALIZATION BASE
# =============================================================================

class WireRecord:
    """
    Mixin giving a dataclass camelCase document (de)serialization.

    Subclasses describe non-scalar fields through class attributes:
        WIRE_NAMES    field -> document key, when not the camelCase name
        ENUMS         field -> Enum type
        NESTED        field -> WireRecord type
        NESTED_LISTS  field -> WireRecord type of the list items
    """

    WIRE_NAMES: ClassVar[Dict[str, str]] = {}
    ENUMS: ClassVar[Dict[str, Type[Enum]]] = {}
    NESTED: ClassVar[Dict[str, Type["WireRecord"]]] = {}
    NESTED_LISTS: ClassVar[Dict[str, Type["WireRecord"]]] = {}

    @classmethod
    def wire_name(cls, name: str) -> str:
        return cls.WIRE_NAMES.get(name) or _camel(name)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            out[self.wire_name(f.name)] = _dump(value)
        for key, value in self.extra.items():
            out.setdefault(key, copy.deepcopy(value))
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} document must be a mapping, got {type(data).__name__}")

        kwargs: Dict[str, Any] = {}
        known = set()
        for f in fields(cls):
            if f.name == "extra":
                continue
            key = cls.wire_name(f.name)
            known.add(key)
            value = data.get(key)
            if value is None:
                continue
            if f.name in cls.ENUMS:
                value = cls.ENUMS[f.name](value)
            elif f.name in cls.NESTED:
                value = cls.NESTED[f.name].from_dict(value)
            elif f.name in cls.NESTED_LISTS:
                value = [cls.NESTED_LISTS[f.name].from_dict(item) for item in value]
            else:
                value = copy.deepcopy(value)
            kwargs[f.name] = value

        kwargs["extra"] = {k: copy.deepcopy(v) for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def merged(self, updates: Dict[str, Any]):
        """Return a copy with the given document fields overwritten."""
        return type(self).from_dict({**self.to_dict(), **updates})


# =============================================================================
# ORGANIZATIONS AND USERS
# =============================================================================

@dataclass
class Organization(WireRecord):
    id: str
    name: str
    admin_email: str = ""
    is_approved: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_system(self) -> bool:
        return self.id == SYSTEM_ORG_ID


@dataclass
class UserHierarchy(WireRecord):
    """Manager and subordinate addresses attached to a user."""
    rsm_email: Optional[str] = None
    se_emails: List[str] = field(default_factory=list)
    dealer_emails: List[str] = field(default_factory=list)
    dse_emails: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def manager_email(self) -> Optional[str]:
        return self.rsm_email

    def subordinate_tiers(self) -> Dict[UserRole, List[str]]:
        return {
            UserRole.SALES_ENG: list(self.se_emails),
            UserRole.DEALER: list(self.dealer_emails),
            UserRole.DSE: list(self.dse_emails),
        }


@dataclass
class User(WireRecord):
    id: str
    email: str
    organization_id: str
    name: str = ""
    password: Optional[str] = None
    role: UserRole = UserRole.DSE
    organization_name: str = ""
    is_approved: bool = False
    parent_id: Optional[str] = None
    hierarchy: Optional[UserHierarchy] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    ENUMS: ClassVar[Dict[str, Type[Enum]]] = {"role": UserRole}
    NESTED: ClassVar[Dict[str, Type[WireRecord]]] = {"hierarchy": UserHierarchy}


# =============================================================================
# CUSTOMERS
# =============================================================================

@dataclass
class Competitor(WireRecord):
    name: str
    share: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Customer(WireRecord):
    id: str
    organization_id: str
    created_by: str
    name: str = ""
    address: str = ""
    pin_code: str = ""
    contact_person: str = ""
    contact_number: str = ""
    business_sector: str = ""
    own_share: float = 0.0
    annual_potential: float = 0.0
    competitors: List[Competitor] = field(default_factory=list)
    fy_plan: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    NESTED_LISTS: ClassVar[Dict[str, Type[WireRecord]]] = {"competitors": Competitor}


# =============================================================================
# PLANS
# =============================================================================

@dataclass
class Attachment(WireRecord):
    name: str
    data: str
    kind: AttachmentKind = AttachmentKind.DOCUMENT
    extra: Dict[str, Any] = field(default_factory=dict)

    WIRE_NAMES: ClassVar[Dict[str, str]] = {"kind": "type"}
    ENUMS: ClassVar[Dict[str, Type[Enum]]] = {"kind": AttachmentKind}

    @property
    def is_remote(self) -> bool:
        """URL attachments are immutable pointers and are never re-uploaded."""
        return self.data.startswith(("http://", "https://"))


@dataclass
class UpdateLogEntry(WireRecord):
    status: str
    updated_by: str
    updated_by_id: str
    timestamp: str = field(default_factory=utc_now_iso)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Plan(WireRecord):
    """Fields shared by every plan variant."""
    id: str
    customer_id: str
    organization_id: str
    type: PlanType = PlanType.NEW_PROJECT
    project_name: str = ""
    machine_type: str = ""
    machine_detail: str = ""
    component_material: str = ""
    material_hardness: str = ""
    input_condition: str = ""
    responsibility: str = ""
    status: str = ""
    update_status_log: List[UpdateLogEntry] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    created_by: str = ""
    value_lakhs: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    ENUMS: ClassVar[Dict[str, Type[Enum]]] = {"type": PlanType}
    NESTED_LISTS: ClassVar[Dict[str, Type[WireRecord]]] = {
        "update_status_log": UpdateLogEntry,
        "attachments": Attachment,
    }

    def merged(self, updates: Dict[str, Any]) -> Plan:
        # A changed type tag selects a different variant
        return plan_from_dict({**self.to_dict(), **updates})


@dataclass
class ProjectPlan(Plan):
    type: PlanType = PlanType.NEW_PROJECT
    cycle_time: bool = False
    tool_list: bool = False
    required_date: str = ""


@dataclass
class ConversionPlan(Plan):
    type: PlanType = PlanType.CONVERSION
    existing_competitor: str = ""
    competitor_product: str = ""
    unit_price: float = 0.0
    monthly_qty: Optional[int] = None
    reason_for_conversion: str = ""
    operation: str = ""
    solution_type: Optional[str] = None
    catalog_item_description: str = ""


@dataclass
class RetentionPlan(Plan):
    type: PlanType = PlanType.RETENTION
    own_product_desc: str = ""
    reason_for_trial: str = ""
    competitor_name: str = ""
    competitor_product_desc: str = ""
    operation: str = ""
    solution_type: Optional[str] = None
    unit_price: Optional[float] = None
    monthly_qty: Optional[int] = None


PLAN_CLASSES: Dict[PlanType, Type[Plan]] = {
    PlanType.NEW_PROJECT: ProjectPlan,
    PlanType.CONVERSION: ConversionPlan,
    PlanType.RETENTION: RetentionPlan,
}


def plan_from_dict(data: Dict[str, Any]) -> Plan:
    """Build the plan variant named by the document's ``type`` tag."""
    if not isinstance(data, dict):
        raise TypeError("Plan document must be a mapping")
    plan_type = PlanType(data.get("type", PlanType.NEW_PROJECT.value))
    return PLAN_CLASSES[plan_type].from_dict(data)


RECORD_LOADERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    ORGANIZATIONS: Organization.from_dict,
    USERS: User.from_dict,
    CUSTOMERS: Customer.from_dict,
    PLANS: plan_from_dict,
}


def load_record(collection: str, document: Dict[str, Any]):
    """Build the record type stored in ``collection`` from a document."""
    try:
        loader = RECORD_LOADERS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None
    return loader(document)


# =============================================================================
# SYNC PACKET
# =============================================================================

PACKET_COLLECTIONS: Dict[PacketType, str] = {
    PacketType.PLAN: PLANS,
    PacketType.CUSTOMER: CUSTOMERS,
    PacketType.USER_REG: USERS,
}


@dataclass
class SyncPacket:
    """
    Unit of transport over the email channel.

    Built immediately before a broadcast and discarded once folded into the
    replica store; never persisted as such.
    """
    type: PacketType
    payload: Any
    timestamp: str = field(default_factory=utc_now_iso)
    sender: str = ""

    @property
    def collection(self) -> str:
        return PACKET_COLLECTIONS[self.type]

    @property
    def record_id(self) -> str:
        return self.payload.id

    @property
    def fingerprint(self) -> str:
        return f"{self.type.value}:{self.record_id}:{self.sender}:{self.timestamp}"

    @classmethod
    def build(cls, record: Any, sender: str) -> SyncPacket:
        """Wrap a plan, customer or user record for transport."""
        if isinstance(record, Plan):
            packet_type = PacketType.PLAN
        elif isinstance(record, Customer):
            packet_type = PacketType.CUSTOMER
        elif isinstance(record, User):
            packet_type = PacketType.USER_REG
        else:
            raise TypeError(f"Records of type {type(record).__name__} are not transported")
        return cls(type=packet_type, payload=record, sender=sender)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.payload.to_dict(),
            "timestamp": self.timestamp,
            "sender": self.sender,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncPacket:
        if not isinstance(data, dict):
            raise TypeError("SyncPacket must be a mapping")
        packet_type = PacketType(data["type"])
        payload = load_record(PACKET_COLLECTIONS[packet_type], data["data"])
        timestamp = data["timestamp"]
        sender = data.get("sender") or ""
        if not isinstance(timestamp, str) or not isinstance(sender, str):
            raise TypeError("SyncPacket timestamp and sender must be strings")
        return cls(type=packet_type, payload=payload, timestamp=timestamp, sender=sender)
