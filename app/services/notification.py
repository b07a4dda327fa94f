"""
Notification Service.

Central service for creating, broadcasting and querying notifications, plus
the emitter functions that translate workflow transitions into notification
records for the affected principals.

Emitters run after the triggering transaction has committed. They open their
own commit and never raise: a failed recipient lookup or notification write
is logged and dropped, the state transition stands.
"""

import functools
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.auth import Profile
from app.models.document import DOCUMENT_FINAL_STATUS, DOCUMENT_RETURNED_STATUSES
from app.models.notification import NOTIFICATION_TYPES, Notification
from app.models.project import ProjectTeamMember
from app.services.notification_hub import get_hub

logger = logging.getLogger(__name__)

# Approvals by this role and every later role are visible to the client
CLIENT_FACING_FROM_ROLE = "head_consultant"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, title, message="", type="info",
               related_type="", related_id=None, actor_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        return NotificationService.broadcast(
            recipient_ids=[recipient_id], title=title, message=message, type=type,
            related_type=related_type, related_id=related_id, actor_id=actor_id,
        )[0]

    @staticmethod
    def broadcast(*, recipient_ids, title, message="", type="info",
                  related_type="", related_id=None, actor_id=None):
        """
        Send one notification to each recipient (duplicates collapsed).

        Returns:
            List of created Notification instances.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")

        notifications = []
        for recipient_id in dict.fromkeys(recipient_ids):
            notif = Notification(
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                related_type=related_type,
                related_id=related_id,
                actor_id=actor_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()

        _bump_versions(n.recipient_id for n in notifications)
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter(Notification.read_at.is_(None))
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return (
            Notification.query
            .filter_by(recipient_id=recipient_id)
            .filter(Notification.read_at.is_(None))
            .count()
        )

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark one of the recipient's own notifications as read."""
        notif = db.session.get(Notification, notification_id)
        # Someone else's notification is reported as missing
        if notif is None or notif.recipient_id != recipient_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if notif.read_at is None:
            notif.mark_read()
            db.session.commit()
            _bump_versions([recipient_id])
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(recipient_id=recipient_id)
            .filter(Notification.read_at.is_(None))
            .update({"read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        if count:
            _bump_versions([recipient_id])
        return count


def _bump_versions(recipient_ids):
    hub = get_hub()
    if hub is None:
        return
    for recipient_id in set(recipient_ids):
        hub.bump(recipient_id)


# ═══════════════════════════════════════════════════════════════
# Recipient resolution
# ═══════════════════════════════════════════════════════════════

def _active_profiles():
    return (
        select(Profile.id)
        .where(Profile.deleted_at.is_(None))
        .where(Profile.status == "approved")
    )


def project_lead_ids(project_id):
    """Lead(s) from the team table, which is the source of truth."""
    rows = db.session.execute(
        select(ProjectTeamMember.profile_id)
        .where(ProjectTeamMember.project_id == project_id)
        .where(ProjectTeamMember.team_role == "project_lead")
    ).scalars()
    return list(rows)


def role_holder_ids(role):
    return list(db.session.execute(_active_profiles().where(Profile.role == role)).scalars())


def client_user_ids(client_id):
    if client_id is None:
        return []
    stmt = _active_profiles().where(Profile.role == "client").where(Profile.client_id == client_id)
    return list(db.session.execute(stmt).scalars())


def recipients_for_role(project, role):
    """Principals who act as *role* on *project*."""
    if role == "project_lead":
        return project_lead_ids(project.id)
    if role == "client":
        return client_user_ids(project.client_id)
    return role_holder_ids(role)


def _is_client_facing(role, sequence):
    if role not in sequence or CLIENT_FACING_FROM_ROLE not in sequence:
        return False
    return sequence.index(role) >= sequence.index(CLIENT_FACING_FROM_ROLE)


# ═══════════════════════════════════════════════════════════════
# Emitters (best-effort, post-commit)
# ═══════════════════════════════════════════════════════════════

def _best_effort(emitter):
    """
    Run an emitter so that nothing it does reaches the caller.

    Recipient lookups and writes both happen after the transition committed;
    any failure is logged, the session rolled back and 0 returned.
    """
    @functools.wraps(emitter)
    def wrapper(*args, **kwargs):
        try:
            return emitter(*args, **kwargs)
        except Exception:
            db.session.rollback()
            logger.warning(
                "Notification emit failed in %s",
                emitter.__name__,
                extra={"event_type": "notification_failed"},
                exc_info=True,
            )
            return 0
    return wrapper


def _emit(messages, *, actor_id, related_type, related_id):
    """
    Write a batch of ``(recipient_ids, type, title, message)`` tuples.

    A recipient gets at most one notification per event; the first message
    that names them wins. The acting principal is never notified.
    Returns the number of notifications written.
    """
    seen = {actor_id} if actor_id is not None else set()
    written = 0
    for recipient_ids, ntype, title, message in messages:
        targets = [r for r in recipient_ids if r not in seen]
        if not targets:
            continue
        seen.update(targets)
        written += len(NotificationService.broadcast(
            recipient_ids=targets, title=title, message=message, type=ntype,
            related_type=related_type, related_id=related_id, actor_id=actor_id,
        ))
    return written


@_best_effort
def notify_report_transition(report, new_status, *, actor_id=None, sequence=None):
    """Notify the principals affected by a report reaching *new_status*."""
    sequence = list(sequence or current_app.config["APPROVAL_SEQUENCE"])
    project = report.project
    author_and_lead = [report.author_id, *project_lead_ids(project.id)]
    author_and_lead = [r for r in author_and_lead if r is not None]
    clients = client_user_ids(project.client_id)
    label = f"Report '{report.title}'"
    messages = []

    if new_status == "submitted":
        messages.append((
            project_lead_ids(project.id), "info",
            "Report submitted for review",
            f"{label} on project '{project.name}' is waiting for your review.",
        ))
    elif new_status.endswith("_rejected"):
        role = new_status[: -len("_rejected")]
        messages.append((
            author_and_lead, "error",
            "Report rejected",
            f"{label} was rejected by the {role.replace('_', ' ')}.",
        ))
    elif new_status.endswith("_approved"):
        role = new_status[: -len("_approved")]
        if role in sequence and role == sequence[-1]:
            messages.append((
                author_and_lead, "success",
                "Report fully approved",
                f"{label} has completed every approval step.",
            ))
        elif role in sequence:
            next_role = sequence[sequence.index(role) + 1]
            messages.append((
                recipients_for_role(project, next_role), "info",
                "Report awaiting your approval",
                f"{label} was approved by the {role.replace('_', ' ')} and needs your decision.",
            ))
        if _is_client_facing(role, sequence):
            messages.append((
                clients, "info",
                "Report status updated",
                f"{label} is now {new_status.replace('_', ' ')}.",
            ))
    elif new_status == "issued":
        messages.append((
            author_and_lead, "success",
            "Report issued",
            f"{label} has been issued.",
        ))
        messages.append((clients, "info", "Report issued", f"{label} has been issued."))
    elif new_status == "closed":
        messages.append((
            author_and_lead, "info",
            "Report closed",
            f"{label} was closed after rejection.",
        ))

    return _emit(messages, actor_id=actor_id, related_type="report", related_id=report.id)


@_best_effort
def notify_project_status_change(project, old_status, new_status, *, actor_id=None):
    messages = [(
        client_user_ids(project.client_id), "info",
        "Project status updated",
        f"Project '{project.name}' moved from {old_status.replace('_', ' ')} "
        f"to {new_status.replace('_', ' ')}.",
    )]
    return _emit(messages, actor_id=actor_id, related_type="project", related_id=project.id)


@_best_effort
def notify_inspection_scheduled(inspection, *, actor_id=None):
    if inspection.inspector_id is None:
        return 0
    start = inspection.scheduled_start.isoformat() if inspection.scheduled_start else "TBD"
    messages = [(
        [inspection.inspector_id], "info",
        "Inspection scheduled",
        f"You are assigned to inspect project '{inspection.project.name}' on {start}.",
    )]
    return _emit(messages, actor_id=actor_id, related_type="inspection", related_id=inspection.id)


# Who acts next on a document in each status
_DOCUMENT_NEXT_REVIEWER = {
    "pending": "admin_team",
    "verified_by_admin_team": "project_lead",
    "approved_by_pl": "head_consultant",
}


@_best_effort
def notify_document_transition(document, new_status, *, actor_id=None):
    """Notify the next reviewer, or the uploader once the document is returned or final."""
    project = document.project
    label = f"Document '{document.name}'"
    messages = []

    next_role = _DOCUMENT_NEXT_REVIEWER.get(new_status)
    if next_role:
        messages.append((
            recipients_for_role(project, next_role), "info",
            "Document awaiting review",
            f"{label} on project '{project.name}' is waiting for your review.",
        ))
    elif new_status == DOCUMENT_FINAL_STATUS:
        uploader = [document.uploaded_by_id] if document.uploaded_by_id else []
        messages.append((
            uploader, "success",
            "Document approved",
            f"{label} passed every verification step.",
        ))
        messages.append((
            client_user_ids(project.client_id), "info",
            "Document approved",
            f"{label} on project '{project.name}' was approved.",
        ))
    elif new_status in DOCUMENT_RETURNED_STATUSES:
        uploader = [document.uploaded_by_id] if document.uploaded_by_id else []
        notes = f" Notes: {document.review_notes}" if document.review_notes else ""
        messages.append((
            uploader, "error",
            "Document needs revision",
            f"{label} was returned ({new_status.replace('_', ' ')}).{notes}",
        ))

    return _emit(messages, actor_id=actor_id, related_type="document", related_id=document.id)
