"""
Report Approval Chain.

A report moves through the ordered approval sequence configured in
``APPROVAL_SEQUENCE`` (default ``project_lead → head_consultant → client``)::

    draft ─submit─▶ submitted ─▶ project_lead_approved ─▶ head_consultant_approved
                                                        ─▶ client_approved ─issue─▶ issued
                   any step may instead end in <role>_rejected ─close─▶ closed

Rules enforced before any write:
  - the caller's stored role must equal the ``role`` they act as
  - the role must be the next one expected for the report's current status
  - a rejected / issued / closed report accepts no further decisions
  - repeating a decision that already produced the current status is a no-op

Status changes are compare-and-set writes; a lost race raises
``ConflictingTransitionError`` and the decision is re-read and retried once.
Rejection is terminal: ``resubmit_report`` opens a new draft that supersedes
the rejected report, which is closed.

Usage:
    from app.services.approval_chain import decide

    decide(report_id=5, role="project_lead", action="approve", principal=profile)
    # {"message": "Report approved by Team Leader", "newStatus": "project_lead_approved", ...}
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update

from app.auth import log_denial, principal_role
from app.core.exceptions import (
    AuthorizationError,
    ChainHaltedError,
    ConflictingTransitionError,
    InvalidTransitionError,
    NotFoundError,
    OutOfSequenceTransitionError,
    ValidationError,
)
from app.models import db
from app.models.audit import try_write_audit
from app.models.inspection import Inspection
from app.models.project import Project
from app.models.report import ACTION_SUFFIX, APPROVAL_ACTIONS, Approval, Report
from app.services.notification import notify_project_status_change, notify_report_transition
from app.services.project_lifecycle import (
    apply_event_feedback,
    is_team_member,
    lead_from_team,
    report_feedback_target,
)
from app.services.role_resolver import ADMIN_ROLES, normalize_role, role_display_label
from app.services.scope_filter import can_view_project

logger = logging.getLogger(__name__)

# Roles allowed to issue or close reports at the end of the chain
FINALIZER_ROLES = frozenset({"admin_lead", "head_consultant"})

_HALTED_STATUSES = {"issued", "closed"}
_EDITABLE_FIELDS = ("title", "findings", "recommendations")


# ═══════════════════════════════════════════════════════════════
# Pure status helpers
# ═══════════════════════════════════════════════════════════════

def approval_sequence() -> list[str]:
    return list(current_app.config["APPROVAL_SEQUENCE"])


def report_statuses(sequence) -> list[str]:
    """Closed status set for a given approval sequence."""
    statuses = ["draft", "submitted"]
    for role in sequence:
        statuses += [f"{role}_approved", f"{role}_rejected"]
    return statuses + ["issued", "closed"]


def resulting_status(role: str, action: str) -> str:
    return f"{role}_{ACTION_SUFFIX[action]}"


def is_halted(status: str) -> bool:
    return status in _HALTED_STATUSES or status.endswith("_rejected")


def next_expected_role(status: str, sequence) -> str | None:
    """Role whose decision is due for a report in *status*, or None."""
    sequence = list(sequence)
    if not sequence:
        return None
    if status == "submitted":
        return sequence[0]
    if status.endswith("_approved"):
        role = status[: -len("_approved")]
        if role in sequence:
            idx = sequence.index(role)
            if idx + 1 < len(sequence):
                return sequence[idx + 1]
    return None


def final_approved_status(sequence) -> str:
    return f"{list(sequence)[-1]}_approved"


def derive_status_from_approvals(approvals, sequence, initial: str = "submitted") -> str:
    """
    Replay the approval log and return the status it implies.

    Entries that would not have been accepted (out of turn, after the chain
    halted) are ignored, so a tampered or legacy log cannot move the
    derived status past the rules.
    """
    status = initial
    for entry in approvals:
        if is_halted(status):
            break
        if entry.action not in APPROVAL_ACTIONS:
            continue
        if next_expected_role(status, sequence) != entry.role:
            continue
        status = resulting_status(entry.role, entry.action)
    return status


def _status_consistent(stored: str, derived: str, sequence) -> bool:
    if stored == "issued":
        return derived == final_approved_status(sequence)
    if stored == "closed":
        return derived.endswith("_rejected")
    return stored == derived


# ═══════════════════════════════════════════════════════════════
# Persistence helpers
# ═══════════════════════════════════════════════════════════════

def _load_report(report_id) -> Report:
    report = db.session.get(Report, report_id, populate_existing=True)
    if report is None:
        raise NotFoundError(resource="Report", resource_id=report_id)
    return report


def _cas_report_status(report: Report, expected: str, new_status: str, **values) -> None:
    result = db.session.execute(
        update(Report)
        .where(Report.id == report.id)
        .where(Report.status == expected)
        .values(
            status=new_status,
            version=Report.version + 1,
            updated_at=datetime.now(timezone.utc),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictingTransitionError("Report", report.id, expected)
    db.session.refresh(report)


def _commit_or_rollback():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ═══════════════════════════════════════════════════════════════
# Approve / reject
# ═══════════════════════════════════════════════════════════════

def _validate_decision_input(role, action, sequence) -> tuple[str, str]:
    missing = [name for name, value in (("role", role), ("action", action)) if not value]
    if missing:
        raise ValidationError(
            f"Missing required parameter(s): {', '.join(missing)}",
            details={m: "required" for m in missing},
        )
    role = normalize_role(role, default="")
    if role not in sequence:
        raise ValidationError(
            "role is not part of the approval sequence",
            details={"role": "invalid", "allowed": list(sequence)},
        )
    if action not in APPROVAL_ACTIONS:
        raise ValidationError(
            f"Unknown action: {action!r}",
            details={"action": "invalid", "allowed": list(APPROVAL_ACTIONS)},
        )
    return role, action


def decide(report_id, role, action, *, principal, comment=None) -> dict:
    """
    Record an approve/reject decision by *principal* acting as *role*.

    Returns:
        {"message", "newStatus", "previousStatus", "changed", "projectTransition"}

    Raises:
        ValidationError, AuthorizationError, NotFoundError,
        OutOfSequenceTransitionError, ChainHaltedError, InvalidTransitionError,
        ConflictingTransitionError (after one retry)
    """
    sequence = approval_sequence()
    role, action = _validate_decision_input(role, action, sequence)

    if not principal.is_approved or principal_role(principal) != role:
        log_denial(principal, role, f"acting as {role}", report_id=report_id)
        raise AuthorizationError(principal.id, role)

    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": "invalid"})

    for attempt in (1, 2):
        try:
            return _decide_once(report_id, role, action, principal, comment, sequence)
        except ConflictingTransitionError:
            db.session.rollback()
            if attempt == 2:
                logger.warning(
                    "Approval on report %s lost a second concurrent race", report_id,
                    extra={"report_id": report_id, "role": role, "event_type": "conflicting_transition"},
                )
                raise
            logger.info(
                "Approval on report %s raced a concurrent update; retrying", report_id,
                extra={"report_id": report_id, "role": role},
            )
        except Exception:
            db.session.rollback()
            raise


def _decide_once(report_id, role, action, principal, comment, sequence) -> dict:
    report = _load_report(report_id)
    if not can_view_project(principal, report.project_id):
        raise NotFoundError(resource="Report", resource_id=report_id)

    target = resulting_status(role, action)
    previous = report.status
    verb = ACTION_SUFFIX[action]
    label = role_display_label(role)

    if previous == target:
        return {
            "message": f"Report already {verb} by {label}",
            "newStatus": target,
            "previousStatus": previous,
            "changed": False,
            "projectTransition": None,
        }
    if is_halted(previous):
        raise ChainHaltedError(report.id, previous)
    if previous == "draft":
        raise InvalidTransitionError(f"Report {report.id}", previous, target, "report has not been submitted")

    expected = next_expected_role(previous, sequence)
    if expected != role:
        raise OutOfSequenceTransitionError(report.id, previous, role, expected)

    _cas_report_status(report, previous, target)
    db.session.add(Approval(
        report_id=report.id,
        approver_id=principal.id,
        role=role,
        action=action,
        comment=comment,
    ))

    project = db.session.get(Project, report.project_id, populate_existing=True)
    project_change = None
    if action == "approve":
        project_change = apply_event_feedback(
            project, report_feedback_target(target, sequence),
            actor_id=principal.id, source=f"report:{target}",
        )

    _commit_or_rollback()
    logger.info(
        "Report %s %s -> %s by %s", report.id, previous, target, role,
        extra={"report_id": report.id, "project_id": report.project_id,
               "principal_id": principal.id, "role": role},
    )

    notify_report_transition(report, target, actor_id=principal.id, sequence=sequence)
    if project_change:
        notify_project_status_change(
            project, project_change["previous_status"], project_change["new_status"],
            actor_id=principal.id,
        )

    return {
        "message": f"Report {verb} by {label}",
        "newStatus": target,
        "previousStatus": previous,
        "changed": True,
        "projectTransition": project_change,
    }


# ═══════════════════════════════════════════════════════════════
# Report lifecycle
# ═══════════════════════════════════════════════════════════════

def _can_author_on(project_id, actor) -> bool:
    return principal_role(actor) in ADMIN_ROLES or is_team_member(project_id, actor.id)


def create_report(data: dict, actor, *, supersedes: Report | None = None) -> Report:
    """Create a draft report. The author must be on the project team or an admin."""
    project_id = data.get("project_id")
    if project_id is None:
        raise ValidationError("project_id is required", details={"project_id": "required"})
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if not _can_author_on(project.id, actor):
        log_denial(actor, "team member", "report create", project_id=project.id)
        raise AuthorizationError(actor.id, "project team member")

    inspection_id = data.get("inspection_id")
    if inspection_id is not None:
        inspection = db.session.get(Inspection, inspection_id)
        if inspection is None or inspection.project_id != project.id:
            raise ValidationError("inspection_id does not belong to this project",
                                  details={"inspection_id": "invalid"})

    report = Report(
        project_id=project.id,
        inspection_id=inspection_id,
        author_id=actor.id,
        supersedes_id=supersedes.id if supersedes else None,
        title=title,
        findings=data.get("findings") or "",
        recommendations=data.get("recommendations") or "",
        status="draft",
    )
    db.session.add(report)
    db.session.flush()
    return report


def create_report_and_commit(data: dict, actor) -> Report:
    report = create_report(data, actor)
    _commit_or_rollback()
    logger.info("Report %s created", report.id,
                extra={"report_id": report.id, "project_id": report.project_id})
    return report


def update_report(report_id, data: dict, actor) -> Report:
    """Edit a draft's text. Submitted reports are frozen."""
    report = _load_report(report_id)
    if report.author_id != actor.id and principal_role(actor) not in ADMIN_ROLES:
        log_denial(actor, "author", "report update", report_id=report.id)
        raise AuthorizationError(actor.id, "report author")
    if report.status != "draft":
        raise InvalidTransitionError(f"Report {report.id}", report.status, "draft",
                                     "only draft reports can be edited")
    for key in _EDITABLE_FIELDS:
        if key in data:
            value = data[key] if data[key] is not None else ""
            if key == "title" and not str(value).strip():
                raise ValidationError("title cannot be empty", details={"title": "required"})
            setattr(report, key, value)
    _commit_or_rollback()
    return report


def submit_report(report_id, actor) -> dict:
    """``draft → submitted``; only the author may submit."""
    report = _load_report(report_id)
    if report.author_id != actor.id:
        log_denial(actor, "author", "report submit", report_id=report.id)
        raise AuthorizationError(actor.id, "report author", "Only the author can submit this report")
    if report.status != "draft":
        raise InvalidTransitionError(f"Report {report.id}", report.status, "submitted")

    _cas_report_status(report, "draft", "submitted", submitted_at=datetime.now(timezone.utc))
    _commit_or_rollback()
    notify_report_transition(report, "submitted", actor_id=actor.id)
    return {"message": "Report submitted", "newStatus": "submitted", "previousStatus": "draft"}


def _require_finalizer(actor, report, what):
    if not actor.is_approved or principal_role(actor) not in FINALIZER_ROLES:
        log_denial(actor, "admin_lead or head_consultant", f"report {what}", report_id=report.id)
        raise AuthorizationError(actor.id, "admin lead or head consultant")


def issue_report(report_id, actor) -> dict:
    """``<last role>_approved → issued``."""
    sequence = approval_sequence()
    report = _load_report(report_id)
    _require_finalizer(actor, report, "issue")

    final = final_approved_status(sequence)
    if report.status != final:
        raise InvalidTransitionError(f"Report {report.id}", report.status, "issued",
                                     f"only {final.replace('_', ' ')} reports can be issued")

    _cas_report_status(report, final, "issued", issued_at=datetime.now(timezone.utc))
    try_write_audit(
        entity_type="report", entity_id=report.id, project_id=report.project_id,
        action="report.issue", actor_id=actor.id,
        diff={"status": {"old": final, "new": "issued"}},
    )
    _commit_or_rollback()
    notify_report_transition(report, "issued", actor_id=actor.id, sequence=sequence)
    return {"message": "Report issued", "newStatus": "issued", "previousStatus": final}


def close_report(report_id, actor) -> dict:
    """``<role>_rejected → closed``."""
    report = _load_report(report_id)
    _require_finalizer(actor, report, "close")
    previous = report.status
    if not previous.endswith("_rejected"):
        raise InvalidTransitionError(f"Report {report.id}", previous, "closed",
                                     "only rejected reports can be closed")

    _cas_report_status(report, previous, "closed")
    try_write_audit(
        entity_type="report", entity_id=report.id, project_id=report.project_id,
        action="report.close", actor_id=actor.id,
        diff={"status": {"old": previous, "new": "closed"}},
    )
    _commit_or_rollback()
    notify_report_transition(report, "closed", actor_id=actor.id)
    return {"message": "Report closed", "newStatus": "closed", "previousStatus": previous}


def resubmit_report(report_id, actor, data: dict | None = None) -> Report:
    """
    Open a new draft that supersedes a rejected report.

    The rejected report is closed in the same transaction; its approval log
    is left untouched and the new draft starts a fresh chain.
    """
    data = data or {}
    old = _load_report(report_id)
    is_lead = lead_from_team(old.project_id) == actor.id
    if old.author_id != actor.id and not is_lead and principal_role(actor) not in ADMIN_ROLES:
        log_denial(actor, "author", "report resubmit", report_id=old.id)
        raise AuthorizationError(actor.id, "report author or project lead")
    previous = old.status
    if not previous.endswith("_rejected"):
        raise InvalidTransitionError(f"Report {old.id}", previous, "closed",
                                     "only rejected reports can be resubmitted")

    try:
        _cas_report_status(old, previous, "closed")
        new = create_report({
            "project_id": old.project_id,
            "inspection_id": old.inspection_id,
            "title": data.get("title") or old.title,
            "findings": data.get("findings", old.findings),
            "recommendations": data.get("recommendations", old.recommendations),
        }, actor, supersedes=old)
        try_write_audit(
            entity_type="report", entity_id=old.id, project_id=old.project_id,
            action="report.resubmit", actor_id=actor.id,
            diff={"status": {"old": previous, "new": "closed"}, "superseded_by": new.id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Report %s superseded by %s", old.id, new.id,
                extra={"report_id": old.id, "project_id": old.project_id})
    return new


def get_approval_history(report: Report) -> dict:
    sequence = approval_sequence()
    approvals = db.session.execute(
        select(Approval).where(Approval.report_id == report.id).order_by(Approval.id)
    ).scalars().all()
    initial = "draft" if report.status == "draft" else "submitted"
    derived = derive_status_from_approvals(approvals, sequence, initial=initial)
    return {
        "report_id": report.id,
        "sequence": sequence,
        "storedStatus": report.status,
        "derivedStatus": derived,
        "consistent": _status_consistent(report.status, derived, sequence),
        "nextExpectedRole": next_expected_role(report.status, sequence),
        "approvals": [a.to_dict() for a in approvals],
    }
