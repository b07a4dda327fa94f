"""
Project Status Machine and team management.

Manages project status transitions with:
  - Closed status set (anything else is a ValidationError)
  - Transition table validation (PROJECT_TRANSITIONS)
  - Compare-and-set write on ``projects.status`` + version bump
  - Audit log for every status change
  - Event feedback from inspections and the report approval chain
  - Team assignments as the single writable source of the project lead

Usage:
    from app.services.project_lifecycle import transition_project

    result = transition_project(project_id=7, new_status="submitted", actor=profile)
    # {"project_id": 7, "previous_status": "draft", "new_status": "submitted", ...}
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.auth import log_denial, principal_role
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ConflictingTransitionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import try_write_audit
from app.models.auth import Client, Profile
from app.models.project import (
    PHASES,
    PROJECT_STATUSES,
    PROJECT_TERMINAL_STATUSES,
    STATUS_PHASE_MAP,
    TEAM_ROLES,
    Project,
    ProjectTeamMember,
    validate_project_transition,
)
from app.services.notification import notify_project_status_change
from app.services.role_resolver import ADMIN_ROLES

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

# Roles that may move any project's status by hand
STATUS_MANAGER_ROLES = ADMIN_ROLES | {"head_consultant"}

# Inspection events → project status they push the project to
INSPECTION_EVENT_TARGETS = {
    "inspection_scheduled": "inspection_scheduled",
    "inspection_started": "inspection_in_progress",
    "inspection_completed": "inspection_completed",
}

# Intermediate report approvals → project review stage
REPORT_APPROVAL_TARGETS = {
    "project_lead_approved": "head_consultant_review",
    "head_consultant_approved": "client_review",
}

FINAL_APPROVAL_TARGET = "government_submitted"

_UPDATABLE_FIELDS = {
    "name", "description", "building_function", "address", "city",
    "imb_number", "floor_count", "building_area", "start_date", "due_date",
}
_INT_FIELDS = {"floor_count"}
_FLOAT_FIELDS = {"building_area"}
_DATE_FIELDS = {"start_date", "due_date"}
# Fields that must never be written from request input
_PROTECTED_FIELDS = {"project_lead_id", "status", "version", "id"}


def get_phase_info(status: str) -> dict:
    """Display phase for a status; several statuses share one phase."""
    phase = STATUS_PHASE_MAP.get(status, 0)
    return {
        "status": status,
        "phase": phase,
        "phase_name": PHASES.get(phase),
        "progress": phase * 20,
    }


def validate_status_value(status) -> str:
    if not isinstance(status, str) or status not in PROJECT_STATUSES:
        raise ValidationError(
            f"Unknown project status: {status!r}",
            details={"status": "invalid", "allowed": list(PROJECT_STATUSES)},
        )
    return status


def get_project_or_404(project_id) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


# ═══════════════════════════════════════════════════════════════
# Project lead projection
# ═══════════════════════════════════════════════════════════════

def lead_from_team(project_id):
    return db.session.execute(
        select(ProjectTeamMember.profile_id)
        .where(ProjectTeamMember.project_id == project_id)
        .where(ProjectTeamMember.team_role == "project_lead")
        .order_by(ProjectTeamMember.id)
    ).scalars().first()


def sync_project_lead(project: Project) -> bool:
    """Recompute ``project_lead_id`` from the team table. Returns True if it changed."""
    db.session.flush()
    lead_id = lead_from_team(project.id)
    if project.project_lead_id == lead_id:
        return False
    project.project_lead_id = lead_id
    return True


def reconcile_project_leads() -> list[int]:
    """
    Recompute the cached lead for every project.

    Returns the ids of projects whose cache was out of date.
    """
    fixed = []
    for project in db.session.execute(select(Project).order_by(Project.id)).scalars():
        before = project.project_lead_id
        if sync_project_lead(project):
            fixed.append(project.id)
            try_write_audit(
                entity_type="project", entity_id=project.id, project_id=project.id,
                action="project.lead_reconciled",
                diff={"project_lead_id": {"old": before, "new": project.project_lead_id}},
            )
    db.session.commit()
    if fixed:
        logger.info("Reconciled project lead cache for %d project(s)", len(fixed),
                    extra={"event_type": "project_lead_reconciled"})
    return fixed


# ═══════════════════════════════════════════════════════════════
# Create / update
# ═══════════════════════════════════════════════════════════════

def _coerce_fields(data: dict) -> dict:
    values = {}
    for key in _UPDATABLE_FIELDS & data.keys():
        value = data[key]
        if value in ("", None):
            values[key] = None
            continue
        try:
            if key in _INT_FIELDS:
                value = int(value)
                if value < 0:
                    raise ValueError
            elif key in _FLOAT_FIELDS:
                value = float(value)
            elif key in _DATE_FIELDS:
                value = date.fromisoformat(str(value))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid value for {key}", details={key: "invalid"})
        values[key] = value
    return values


def _reject_protected(data: dict):
    protected = sorted(_PROTECTED_FIELDS & data.keys())
    if protected:
        raise ValidationError(
            f"Field(s) cannot be set directly: {', '.join(protected)}",
            details={f: "read_only" for f in protected},
        )


def create_project(data: dict, actor: Profile) -> Project:
    """Create a draft project. Only admin roles may create projects."""
    if principal_role(actor) not in ADMIN_ROLES:
        log_denial(actor, "admin", "project create")
        raise AuthorizationError(actor.id, "admin", "Only administrators can create projects")

    _reject_protected(data)
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    client_id = data.get("client_id")
    if client_id is None:
        raise ValidationError("client_id is required", details={"client_id": "required"})
    if db.session.get(Client, client_id) is None:
        raise ValidationError("client_id does not reference a client", details={"client_id": "invalid"})

    values = _coerce_fields(data)
    values["name"] = name
    project = Project(client_id=client_id, created_by_id=actor.id, status="draft", **values)
    db.session.add(project)
    db.session.flush()
    try_write_audit(
        entity_type="project", entity_id=project.id, project_id=project.id,
        action="project.create", actor_id=actor.id,
        diff={"status": {"old": None, "new": "draft"}, "client_id": {"old": None, "new": client_id}},
    )
    db.session.commit()
    logger.info("Project %s created", project.id,
                extra={"project_id": project.id, "principal_id": actor.id})
    return project


def update_project(project: Project, data: dict, actor: Profile) -> Project:
    """Update building metadata. Status and lead have their own operations."""
    if principal_role(actor) not in STATUS_MANAGER_ROLES and not _is_lead(project, actor):
        log_denial(actor, "admin", "project update", project_id=project.id)
        raise AuthorizationError(actor.id, "admin or project lead")

    _reject_protected(data)
    values = _coerce_fields(data)
    if "name" in values and not values["name"]:
        raise ValidationError("name cannot be empty", details={"name": "required"})

    diff = {}
    for key, value in values.items():
        old = getattr(project, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(project, key, value)
    if diff:
        try_write_audit(
            entity_type="project", entity_id=project.id, project_id=project.id,
            action="project.update", actor_id=actor.id, diff=diff,
        )
    db.session.commit()
    return project


# ═══════════════════════════════════════════════════════════════
# Status transitions
# ═══════════════════════════════════════════════════════════════

def _is_lead(project, profile) -> bool:
    return lead_from_team(project.id) == profile.id


def _is_project_client(project, profile) -> bool:
    return principal_role(profile) == "client" and profile.client_id == project.client_id


def _can_transition(project, actor, new_status) -> bool:
    role = principal_role(actor)
    if role in STATUS_MANAGER_ROLES:
        return True
    if _is_lead(project, actor):
        return True
    # A client may hand their own draft in
    return new_status == "submitted" and project.status == "draft" and _is_project_client(project, actor)


def apply_project_status(project: Project, new_status: str, *, actor_id=None, source="manual") -> dict:
    """
    Compare-and-set the project status inside the caller's transaction.

    Validates the edge, writes ``status`` only if it still equals the value
    read, bumps ``version`` and appends an audit row. Does not commit.

    Raises:
        ValidationError, InvalidTransitionError, ConflictingTransitionError
    """
    validate_status_value(new_status)
    previous = project.status
    if not validate_project_transition(previous, new_status):
        reason = "project is closed" if previous in PROJECT_TERMINAL_STATUSES else None
        raise InvalidTransitionError("project", previous, new_status, reason)

    result = db.session.execute(
        update(Project)
        .where(Project.id == project.id)
        .where(Project.status == previous)
        .values(
            status=new_status,
            version=Project.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictingTransitionError("Project", project.id, previous)
    db.session.refresh(project)

    try_write_audit(
        entity_type="project", entity_id=project.id, project_id=project.id,
        action="project.status_change", actor_id=actor_id,
        diff={"status": {"old": previous, "new": new_status}, "source": source},
    )
    logger.info(
        "Project %s status %s -> %s (%s)", project.id, previous, new_status, source,
        extra={"project_id": project.id, "principal_id": actor_id},
    )
    return {
        "project_id": project.id,
        "previous_status": previous,
        "new_status": new_status,
        "source": source,
        **get_phase_info(new_status),
    }


def transition_project(project_id, new_status, *, actor: Profile) -> dict:
    """
    Execute a manual project status transition.

    Returns:
        {"project_id", "previous_status", "new_status", "phase", "phase_name", "progress"}

    Raises:
        ValidationError (unknown status), NotFoundError, AuthorizationError,
        InvalidTransitionError, ConflictingTransitionError
    """
    validate_status_value(new_status)
    project = get_project_or_404(project_id)

    if not _can_transition(project, actor, new_status):
        log_denial(actor, "project status manager", f"transition to {new_status}", project_id=project.id)
        raise AuthorizationError(actor.id, "admin, head consultant or project lead")

    try:
        result = apply_project_status(project, new_status, actor_id=actor.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    notify_project_status_change(project, result["previous_status"], new_status, actor_id=actor.id)
    return result


# ═══════════════════════════════════════════════════════════════
# Event feedback
# ═══════════════════════════════════════════════════════════════

def report_feedback_target(report_status: str, sequence) -> str | None:
    """Project status implied by a report reaching *report_status*."""
    sequence = list(sequence)
    if sequence and report_status == f"{sequence[-1]}_approved":
        return FINAL_APPROVAL_TARGET
    return REPORT_APPROVAL_TARGETS.get(report_status)


def apply_event_feedback(project: Project, target: str | None, *, actor_id=None, source: str) -> dict | None:
    """
    Move the project to *target* when that edge is legal from its current status.

    Runs inside the caller's transaction. An illegal or redundant edge is
    skipped and logged; it never fails the triggering action.
    """
    if target is None or project.status == target:
        return None
    if not validate_project_transition(project.status, target):
        logger.info(
            "Skipped project feedback %s -> %s (%s): edge not allowed",
            project.status, target, source,
            extra={"project_id": project.id, "event_type": "project_feedback_skipped"},
        )
        return None
    return apply_project_status(project, target, actor_id=actor_id, source=source)


def apply_inspection_event(project: Project, event: str, *, actor_id=None) -> dict | None:
    return apply_event_feedback(
        project, INSPECTION_EVENT_TARGETS.get(event), actor_id=actor_id, source=event,
    )


# ═══════════════════════════════════════════════════════════════
# Team
# ═══════════════════════════════════════════════════════════════

def _require_team_manager(project, actor):
    if principal_role(actor) not in ADMIN_ROLES:
        log_denial(actor, "admin", "team change", project_id=project.id)
        raise AuthorizationError(actor.id, "admin", "Only administrators can change the project team")


def add_team_member(project: Project, profile_id, team_role: str, actor: Profile) -> ProjectTeamMember:
    """Assign a principal to the project team and refresh the lead cache."""
    _require_team_manager(project, actor)
    if team_role not in TEAM_ROLES:
        raise ValidationError(
            f"Unknown team role: {team_role!r}",
            details={"team_role": "invalid", "allowed": list(TEAM_ROLES)},
        )
    profile = db.session.get(Profile, profile_id) if profile_id is not None else None
    if profile is None or profile.is_deleted:
        raise ValidationError("profile_id does not reference an active profile",
                              details={"profile_id": "invalid"})

    if team_role == "project_lead" and lead_from_team(project.id) is not None:
        raise ConflictError("ProjectTeamMember", "team_role", "project_lead")
    exists = db.session.execute(
        select(ProjectTeamMember.id)
        .where(ProjectTeamMember.project_id == project.id)
        .where(ProjectTeamMember.profile_id == profile.id)
        .where(ProjectTeamMember.team_role == team_role)
    ).scalar_one_or_none()
    if exists is not None:
        raise ConflictError("ProjectTeamMember", "profile_id", str(profile.id))

    member = ProjectTeamMember(
        project_id=project.id, profile_id=profile.id, team_role=team_role, assigned_by_id=actor.id,
    )
    db.session.add(member)
    try:
        sync_project_lead(project)
    except IntegrityError:
        # Concurrent insert won the unique index
        db.session.rollback()
        raise ConflictError("ProjectTeamMember", "team_role", team_role)

    try_write_audit(
        entity_type="project_team", entity_id=member.id, project_id=project.id,
        action="project_team.add", actor_id=actor.id,
        diff={"profile_id": profile.id, "team_role": team_role},
    )
    db.session.commit()
    return member


def remove_team_member(project: Project, member_id, actor: Profile) -> None:
    _require_team_manager(project, actor)
    member = db.session.get(ProjectTeamMember, member_id)
    if member is None or member.project_id != project.id:
        raise NotFoundError(resource="ProjectTeamMember", resource_id=member_id)

    snapshot = {"profile_id": member.profile_id, "team_role": member.team_role}
    db.session.delete(member)
    sync_project_lead(project)
    try_write_audit(
        entity_type="project_team", entity_id=member_id, project_id=project.id,
        action="project_team.remove", actor_id=actor.id, diff=snapshot,
    )
    db.session.commit()


def list_team(project: Project) -> list[ProjectTeamMember]:
    return db.session.execute(
        select(ProjectTeamMember)
        .where(ProjectTeamMember.project_id == project.id)
        .order_by(ProjectTeamMember.id)
    ).scalars().all()


def is_team_member(project_id, profile_id, team_role: str | None = None) -> bool:
    stmt = (
        select(ProjectTeamMember.id)
        .where(ProjectTeamMember.project_id == project_id)
        .where(ProjectTeamMember.profile_id == profile_id)
    )
    if team_role:
        stmt = stmt.where(ProjectTeamMember.team_role == team_role)
    return db.session.execute(stmt.limit(1)).first() is not None
