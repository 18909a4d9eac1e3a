"""
Registration, login and role checks for the sales tracker.
Passwords are bcrypt hashes; the super-admin credential is provisioned
through the environment, never shipped with the code.
"""

from .authentication import (
    LoginResult,
    RegistrationResult,
    build_bootstrap_admin,
    ensure_role,
    hash_password,
    login,
    register_organization,
    verify_password,
)

__all__ = [
    "LoginResult",
    "RegistrationResult",
    "build_bootstrap_admin",
    "ensure_role",
    "hash_password",
    "login",
    "register_organization",
    "verify_password",
]
