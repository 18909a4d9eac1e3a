"""
Registration and login against the replica store.

Passwords are stored as bcrypt hashes. The super-admin of the system
organization is provisioned from the environment:

    TRACKER_BOOTSTRAP_ADMIN_EMAIL            login address
    TRACKER_BOOTSTRAP_ADMIN_PASSWORD_HASH    bcrypt hash (see hash_password)

Without them the seeded super-admin has no credential and cannot log in.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Iterable, Optional
import logging

import bcrypt

from tracker_core.errors import AuthRequiredError, RecordValidationError
from tracker_core.models import (
    SYSTEM_ORG_ID,
    SYSTEM_ORG_NAME,
    Organization,
    User,
    UserRole,
    new_id,
    normalize_email,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

BOOTSTRAP_ADMIN_ID = "super_admin"

MSG_ORG_NOT_FOUND = "Organization not found."
MSG_ORG_PENDING = "Organization is pending approval by Super Admin."
MSG_INVALID_CREDENTIALS = "Invalid User ID or Password for this Organization."
MSG_ACCOUNT_LOCKED = "Account locked or pending approval."
MSG_ORG_EXISTS = "Organization name already registered."


# ==================== PASSWORDS ====================

def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Example:
        >>> hash_password("mypassword123")
        '$2b$12$...'
    """
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: Optional[str]) -> bool:
    """False for a missing or malformed hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


# ==================== BOOTSTRAP ====================

def build_bootstrap_admin(settings: Any = None) -> User:
    """
    Super-admin of the system organization.

    Reads the provisioned address and hash from ``settings`` or, when no
    settings are given, straight from the environment.
    """
    if settings is not None:
        email = settings.bootstrap_admin_email
        password_hash = settings.bootstrap_admin_password_hash
    else:
        email = os.getenv("TRACKER_BOOTSTRAP_ADMIN_EMAIL")
        password_hash = os.getenv("TRACKER_BOOTSTRAP_ADMIN_PASSWORD_HASH")

    if not (email and password_hash):
        logger.debug("Bootstrap admin not provisioned; super-admin login disabled")

    return User(
        id=BOOTSTRAP_ADMIN_ID,
        email=(email or "").strip(),
        organization_id=SYSTEM_ORG_ID,
        name="Super Admin",
        password=password_hash or None,
        role=UserRole.SUPER_ADMIN,
        organization_name=SYSTEM_ORG_NAME,
        is_approved=True,
    )


# ==================== RESULTS ====================

@dataclass
class LoginResult:
    success: bool
    message: str = ""
    user: Optional[User] = None

    def __bool__(self) -> bool:
        return self.success


@dataclass
class RegistrationResult:
    success: bool
    message: str = ""
    organization: Optional[Organization] = None
    admin: Optional[User] = None

    def __bool__(self) -> bool:
        return self.success


# ==================== FLOWS ====================

def register_organization(service, org_name: str, admin_name: str,
                          admin_email: str, password: str) -> RegistrationResult:
    """
    Create an unapproved organization and its (approved) admin user.

    Args:
        service: UnifiedDataService used for the writes

    Returns:
        RegistrationResult; unsuccessful when the name is taken
    """
    org_name = org_name.strip()
    if not org_name or not admin_email.strip() or not password.strip():
        raise RecordValidationError("Organization name, admin email and password are required")

    if service.store.find_organization_by_name(org_name) is not None:
        return RegistrationResult(False, MSG_ORG_EXISTS)

    organization = Organization(
        id=new_id("org"),
        name=org_name,
        admin_email=admin_email.strip(),
        is_approved=False,
        created_at=utc_now_iso(),
    )
    service.add_organization(organization)

    admin = User(
        id=new_id("user"),
        email=admin_email.strip(),
        organization_id=organization.id,
        name=admin_name.strip(),
        password=hash_password(password.strip()),
        role=UserRole.ORG_ADMIN,
        organization_name=organization.name,
        is_approved=True,
    )
    service.add_user(admin, acting_user=admin)

    logger.info(f"Registered organization '{organization.name}' pending approval")
    return RegistrationResult(True, organization=organization, admin=admin)


def _find_super_admin(users: Iterable[User], email: str, password: str) -> Optional[User]:
    for user in users:
        if (
            user.role == UserRole.SUPER_ADMIN
            and user.organization_id == SYSTEM_ORG_ID
            and user.email
            and normalize_email(user.email) == normalize_email(email)
            and verify_password(password, user.password)
        ):
            return user
    return None


def login(store, org_name: str, email: str, password: str) -> LoginResult:
    """
    Authenticate against the users in ``store``.

    Super-admins of the system organization are accepted whatever
    organization name was entered.
    """
    clean_email = email.strip()
    clean_pass = password.strip()
    users = store.get_users()

    super_admin = _find_super_admin(users, clean_email, clean_pass)
    if super_admin is not None:
        return LoginResult(True, user=super_admin)

    org = store.find_organization_by_name(org_name)
    if org is None:
        return LoginResult(False, MSG_ORG_NOT_FOUND)
    if not org.is_approved:
        return LoginResult(False, MSG_ORG_PENDING)

    for user in users:
        if (
            user.organization_id == org.id
            and normalize_email(user.email) == normalize_email(clean_email)
            and verify_password(clean_pass, user.password)
        ):
            if not user.is_approved:
                return LoginResult(False, MSG_ACCOUNT_LOCKED)
            return LoginResult(True, user=user)

    return LoginResult(False, MSG_INVALID_CREDENTIALS)


def ensure_role(user: Optional[User], *roles: UserRole) -> User:
    """
    Raises:
        AuthRequiredError: if ``user`` is missing or holds none of ``roles``
    """
    if user is None:
        raise AuthRequiredError()
    if user.role not in roles:
        raise AuthRequiredError(
            f"{user.role.value} may not perform this action",
            details={"required_roles": [r.value for r in roles]},
        )
    return user
