"""
User Service — registration and principal administration.

Profiles are paired with identities issued by the authentication provider.
A new profile starts ``pending``; an administrator approves, rejects or
deletes it. Deletion archives the row instead of removing it: the email is
renamed to ``<email>_deleted_<unix-ts>`` so it can be registered again,
while approvals, reports and notifications keep pointing at the old row.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from app.auth import log_denial, principal_role
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import try_write_audit
from app.models.auth import PROFILE_STATUSES, Client, Profile
from app.services.role_resolver import DEFAULT_ROLE, USER_ADMIN_ROLES, is_known_role, normalize_role

logger = logging.getLogger(__name__)

PROFILE_TRANSITIONS = {
    "pending":  ["approved", "rejected", "deleted"],
    "approved": ["rejected", "deleted"],
    "rejected": ["approved", "deleted"],
    "deleted":  [],
}


def normalize_email(email) -> str:
    """Trim, lower-case and syntax-check an email address."""
    if not email or not isinstance(email, str):
        raise ValidationError("email is required", details={"email": "required"})
    try:
        valid = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"})
    return valid.normalized.lower()


def archived_email(email: str, when: datetime | None = None) -> str:
    ts = int((when or datetime.now(timezone.utc)).timestamp())
    return f"{email}_deleted_{ts}"


def get_active_profile_by_email(email: str) -> Profile | None:
    return Profile.query_active().filter_by(email=email).first()


# ═══════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════
def register_profile(
    email: str,
    full_name: str | None = None,
    role: str | None = None,
    specialization: str | None = None,
    client_id: int | None = None,
    phone: str | None = None,
    external_id: str | None = None,
) -> Profile:
    """Create a pending profile. One live profile per email."""
    email = normalize_email(email)

    if role in (None, ""):
        role = DEFAULT_ROLE
    elif not is_known_role(role):
        raise ValidationError(f"Unknown role: {role!r}", details={"role": "invalid"})
    else:
        role = normalize_role(role)

    if client_id is not None and db.session.get(Client, client_id) is None:
        raise ValidationError("client_id does not reference a client", details={"client_id": "invalid"})

    if get_active_profile_by_email(email) is not None:
        raise ConflictError("Profile", "email", email)

    profile = Profile(
        email=email,
        full_name=(full_name or "").strip() or None,
        role=role,
        specialization=(specialization or "").strip() or None,
        client_id=client_id,
        phone=phone,
        external_id=external_id,
        status="pending",
    )
    db.session.add(profile)
    try:
        db.session.flush()
    except IntegrityError:
        # Concurrent registration won the partial unique index
        db.session.rollback()
        raise ConflictError("Profile", "email", email)

    try_write_audit(
        entity_type="profile", entity_id=profile.id, action="profile.register",
        actor_id=profile.id, diff={"role": role, "status": "pending"},
    )
    db.session.commit()
    logger.info("Profile %s registered as %s (pending)", profile.id, role,
                extra={"principal_id": profile.id, "role": role})
    return profile


# ═══════════════════════════════════════════════════════════════
# Administration
# ═══════════════════════════════════════════════════════════════
def _require_user_admin(actor: Profile):
    if not actor.is_approved or principal_role(actor) not in USER_ADMIN_ROLES:
        log_denial(actor, "user admin", "principal administration")
        raise AuthorizationError(actor.id, "superadmin or admin lead")


def _get_profile(profile_id) -> Profile:
    profile = db.session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(resource="Profile", resource_id=profile_id)
    return profile


def _move(profile: Profile, new_status: str):
    if new_status not in PROFILE_TRANSITIONS.get(profile.status, []):
        raise InvalidTransitionError("profile", profile.status, new_status)


def list_profiles(actor: Profile, status: str | None = None, page: int = 1, per_page: int = 50) -> dict:
    """List profiles, newest first. Deleted profiles only appear when asked for."""
    _require_user_admin(actor)
    if status and status not in PROFILE_STATUSES:
        raise ValidationError(f"Unknown status: {status!r}", details={"status": "invalid"})

    q = Profile.query
    if status:
        q = q.filter_by(status=status)
    else:
        q = q.filter(Profile.deleted_at.is_(None))
    q = q.order_by(Profile.created_at.desc(), Profile.id.desc())

    total = q.count()
    profiles = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [p.to_dict() for p in profiles],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


def approve_profile(profile_id, actor: Profile, role: str | None = None) -> Profile:
    """Approve a pending/rejected profile, optionally correcting its role."""
    _require_user_admin(actor)
    profile = _get_profile(profile_id)
    _move(profile, "approved")

    diff = {"status": {"old": profile.status, "new": "approved"}}
    if role:
        if not is_known_role(role):
            raise ValidationError(f"Unknown role: {role!r}", details={"role": "invalid"})
        new_role = normalize_role(role)
        if new_role != profile.role:
            diff["role"] = {"old": profile.role, "new": new_role}
            profile.role = new_role

    profile.status = "approved"
    profile.approved_at = datetime.now(timezone.utc)
    profile.rejection_reason = None
    try_write_audit(entity_type="profile", entity_id=profile.id, action="profile.approve",
                    actor_id=actor.id, diff=diff)
    db.session.commit()
    return profile


def reject_profile(profile_id, actor: Profile, reason: str | None = None) -> Profile:
    _require_user_admin(actor)
    profile = _get_profile(profile_id)
    if profile.id == actor.id:
        raise ValidationError("You cannot reject your own profile", details={"profile_id": "self"})
    _move(profile, "rejected")

    previous = profile.status
    profile.status = "rejected"
    profile.rejection_reason = reason
    try_write_audit(entity_type="profile", entity_id=profile.id, action="profile.reject",
                    actor_id=actor.id,
                    diff={"status": {"old": previous, "new": "rejected"}, "reason": reason})
    db.session.commit()
    return profile


def delete_profile(profile_id, actor: Profile) -> Profile:
    """Archive a profile: mark deleted and free its email for re-registration."""
    _require_user_admin(actor)
    profile = _get_profile(profile_id)
    if profile.id == actor.id:
        raise ValidationError("You cannot delete your own profile", details={"profile_id": "self"})
    _move(profile, "deleted")

    now = datetime.now(timezone.utc)
    previous_status, previous_email = profile.status, profile.email
    profile.status = "deleted"
    profile.email = archived_email(previous_email, now)
    profile.soft_delete()
    try_write_audit(
        entity_type="profile", entity_id=profile.id, action="profile.delete", actor_id=actor.id,
        diff={
            "status": {"old": previous_status, "new": "deleted"},
            "email": {"old": previous_email, "new": profile.email},
        },
    )
    db.session.commit()
    logger.info("Profile %s deleted and archived", profile.id,
                extra={"principal_id": actor.id, "event_type": "profile_deleted"})
    return profile
