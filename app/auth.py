"""
Principal lookup and request guards.

``init_jwt_middleware`` attaches ``g.principal_id``; the helpers here turn it
into a Profile and enforce the coarse rules every endpoint shares:

  - no valid token / unknown or deleted profile  → AuthenticationError (401)
  - profile not yet approved, for mutations      → AuthorizationError (403)
  - role outside the allowed set                 → AuthorizationError (403)

The stored profile role is authoritative; the ``role`` token claim is ignored
for authorization.
"""

import logging

from flask import g

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.models import db
from app.models.auth import Profile
from app.services.role_resolver import normalize_role

logger = logging.getLogger(__name__)


def current_principal() -> Profile:
    """Return the calling Profile or raise AuthenticationError."""
    cached = getattr(g, "principal", None)
    if cached is not None:
        return cached

    principal_id = getattr(g, "principal_id", None)
    if principal_id is None:
        raise AuthenticationError()

    profile = db.session.get(Profile, principal_id)
    if profile is None or profile.is_deleted or profile.status == "deleted":
        raise AuthenticationError("Session does not belong to an active profile")

    g.principal = profile
    return profile


def principal_role(profile: Profile) -> str:
    return normalize_role(profile.role)


def log_denial(profile: Profile | None, required: str, reason: str, **context) -> None:
    """Audit-log an authorization denial."""
    logger.warning(
        "Authorization denied: %s",
        reason,
        extra={
            "event_type": "authz_denied",
            "principal_id": profile.id if profile else None,
            "role": profile.role if profile else None,
            "request_id": getattr(g, "request_id", None),
            **context,
        },
    )


def require_approved_principal() -> Profile:
    """Return the caller when their account has been approved by an admin."""
    profile = current_principal()
    if not profile.is_approved:
        log_denial(profile, "approved", f"profile status is {profile.status}")
        raise AuthorizationError(
            profile.id, "approved",
            "Your account is awaiting approval and cannot perform this action",
        )
    return profile


def require_role(*roles: str) -> Profile:
    """Return the approved caller when their canonical role is one of *roles*."""
    profile = require_approved_principal()
    role = principal_role(profile)
    if role not in roles:
        required = " or ".join(roles)
        log_denial(profile, required, f"role {role} not in {sorted(roles)}")
        raise AuthorizationError(profile.id, required)
    return profile

