"""Record types for organizations, users, customers, plans and sync packets."""

from tracker_core.models.records import (
    ORGANIZATIONS,
    USERS,
    CUSTOMERS,
    PLANS,
    COLLECTIONS,
    SYSTEM_ORG_ID,
    SYSTEM_ORG_NAME,
    UserRole,
    PlanType,
    AttachmentKind,
    PacketType,
    WireRecord,
    Organization,
    UserHierarchy,
    User,
    Competitor,
    Customer,
    Attachment,
    UpdateLogEntry,
    Plan,
    ProjectPlan,
    ConversionPlan,
    RetentionPlan,
    SyncPacket,
    plan_from_dict,
    load_record,
    utc_now_iso,
    new_id,
    normalize_email,
)

__all__ = [
    "ORGANIZATIONS",
    "USERS",
    "CUSTOMERS",
    "PLANS",
    "COLLECTIONS",
    "SYSTEM_ORG_ID",
    "SYSTEM_ORG_NAME",
    "UserRole",
    "PlanType",
    "AttachmentKind",
    "PacketType",
    "WireRecord",
    "Organization",
    "UserHierarchy",
    "User",
    "Competitor",
    "Customer",
    "Attachment",
    "UpdateLogEntry",
    "Plan",
    "ProjectPlan",
    "ConversionPlan",
    "RetentionPlan",
    "SyncPacket",
    "plan_from_dict",
    "load_record",
    "utc_now_iso",
    "new_id",
    "normalize_email",
]
