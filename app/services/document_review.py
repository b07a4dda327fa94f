"""
Document Review — upload, three-step verification and re-upload of project documents.

Review stages, keyed by the document's current status::

    pending                 → admin team (or admin lead)   verify   / request revision
    verified_by_admin_team  → the project's lead            approve  / reject
    approved_by_pl          → head consultant               approve  / request revision

Both actions are exposed as ``approve`` / ``reject``; the stage decides which
status they produce. A returned document (revision requested or rejected)
goes back to ``pending`` only through ``revise_document`` with a new file.

Status writes are compare-and-set on the current status with a version bump,
retried once after a lost race, the same as report decisions.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from app.auth import log_denial, principal_role
from app.core.exceptions import (
    AuthorizationError,
    ConflictingTransitionError,
    InvalidTransitionError,
    ValidationError,
)
from app.models import db
from app.models.audit import try_write_audit
from app.models.document import (
    DOCUMENT_CATEGORIES,
    DOCUMENT_FINAL_STATUS,
    DOCUMENT_STATUSES,
    Document,
)
from app.models.project import PROJECT_TERMINAL_STATUSES, Project
from app.services.notification import notify_document_transition
from app.services.project_lifecycle import get_project_or_404, is_team_member
from app.services.role_resolver import ADMIN_ROLES, role_display_label
from app.services.scope_filter import get_visible_document

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = ("approve", "reject")

# status → (reviewing role, {action: resulting status})
REVIEW_STAGES = {
    "pending": ("admin_team", {"approve": "verified_by_admin_team", "reject": "revision_requested"}),
    "verified_by_admin_team": ("project_lead", {"approve": "approved_by_pl", "reject": "rejected_by_pl"}),
    "approved_by_pl": ("head_consultant", {"approve": "approved_by_hc", "reject": "revision_requested_by_hc"}),
}

# resulting status → (reviewing role, action) that produced it
_PRODUCED_BY = {
    target: (stage_role, action)
    for stage_role, targets in REVIEW_STAGES.values()
    for action, target in targets.items()
}

DOCUMENT_VERIFIER_ROLES = frozenset({"admin_team", "admin_lead"})

_MAX_NAME = 300
_MAX_PATH = 500


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════

def _can_review(stage_role: str, principal, project_id) -> bool:
    if not principal.is_approved:
        return False
    role = principal_role(principal)
    if stage_role == "admin_team":
        return role in DOCUMENT_VERIFIER_ROLES
    if stage_role == "project_lead":
        return role == "project_lead" and is_team_member(project_id, principal.id, "project_lead")
    return role == stage_role


def _can_upload(project: Project, actor) -> bool:
    role = principal_role(actor)
    if role in ADMIN_ROLES:
        return True
    if role == "client":
        return actor.client_id is not None and actor.client_id == project.client_id
    return is_team_member(project.id, actor.id)


def _file_fields(data: dict, *, require_name: bool) -> dict:
    """Validate the file metadata of an upload. Storage itself happens elsewhere."""
    fields = {}
    errors = {}

    storage_path = (data.get("storage_path") or "").strip()
    if not storage_path:
        errors["storage_path"] = "required"
    elif len(storage_path) > _MAX_PATH:
        errors["storage_path"] = "too long"
    else:
        fields["storage_path"] = storage_path

    name = (data.get("name") or "").strip()
    if name:
        if len(name) > _MAX_NAME:
            errors["name"] = "too long"
        else:
            fields["name"] = name
    elif require_name:
        errors["name"] = "required"

    if data.get("mime_type") is not None:
        fields["mime_type"] = str(data["mime_type"])[:100]

    size = data.get("file_size")
    if size is not None:
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            errors["file_size"] = "must be a non-negative integer"
        else:
            fields["file_size"] = size

    if errors:
        raise ValidationError("Invalid document fields", details=errors)
    return fields


def _cas_document_status(document: Document, expected: str, new_status: str, **values) -> None:
    result = db.session.execute(
        update(Document)
        .where(Document.id == document.id)
        .where(Document.status == expected)
        .values(
            status=new_status,
            version=Document.version + 1,
            updated_at=datetime.now(timezone.utc),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictingTransitionError("Document", document.id, expected)
    db.session.refresh(document)


def _with_one_retry(fn, document_id):
    for attempt in (1, 2):
        try:
            return fn()
        except ConflictingTransitionError:
            db.session.rollback()
            if attempt == 2:
                logger.warning(
                    "Document %s lost a second concurrent race", document_id,
                    extra={"document_id": document_id, "event_type": "conflicting_transition"},
                )
                raise
            logger.info("Document %s raced a concurrent update; retrying", document_id)
        except Exception:
            db.session.rollback()
            raise


# ═══════════════════════════════════════════════════════════════
# Upload
# ═══════════════════════════════════════════════════════════════

def upload_document(project_id, data: dict, actor) -> Document:
    """Register an uploaded file against a project; it starts ``pending``."""
    project = get_project_or_404(project_id)
    if not actor.is_approved or not _can_upload(project, actor):
        log_denial(actor, "project member", "document upload", project_id=project.id)
        raise AuthorizationError(actor.id, "project member, owning client or admin")
    if project.status in PROJECT_TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Project {project.id}", project.status, None, "project no longer accepts documents",
        )

    fields = _file_fields(data, require_name=True)
    category = data.get("category") or "other"
    if category not in DOCUMENT_CATEGORIES:
        raise ValidationError(
            f"Unknown document category: {category!r}",
            details={"category": "invalid", "allowed": list(DOCUMENT_CATEGORIES)},
        )

    document = Document(
        project_id=project.id,
        uploaded_by_id=actor.id,
        category=category,
        status="pending",
        **fields,
    )
    db.session.add(document)
    db.session.flush()
    try_write_audit(
        entity_type="document", entity_id=document.id, project_id=project.id,
        action="document.upload", actor_id=actor.id,
        diff={"name": document.name, "category": category},
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Document %s uploaded to project %s", document.id, project.id,
                extra={"document_id": document.id, "project_id": project.id, "principal_id": actor.id})
    notify_document_transition(document, "pending", actor_id=actor.id)
    return document


def revise_document(document_id, data: dict, actor) -> Document:
    """Replace the file of a returned document and send it back to ``pending``."""
    document = get_visible_document(actor, document_id)
    if not actor.is_approved or (
        document.uploaded_by_id != actor.id and principal_role(actor) not in ADMIN_ROLES
    ):
        log_denial(actor, "uploader", "document revision", document_id=document.id)
        raise AuthorizationError(actor.id, "uploader or admin")

    fields = _file_fields(data, require_name=False)

    def _revise():
        db.session.refresh(document)
        previous = document.status
        if not document.is_returned:
            raise InvalidTransitionError(
                f"Document {document.id}", previous, "pending", "only returned documents can be revised",
            )
        _cas_document_status(
            document, previous, "pending",
            revision=Document.revision + 1,
            review_notes=None, reviewed_by_id=None, reviewed_at=None,
            **fields,
        )
        try_write_audit(
            entity_type="document", entity_id=document.id, project_id=document.project_id,
            action="document.revise", actor_id=actor.id,
            diff={"status": {"old": previous, "new": "pending"}, "revision": document.revision},
        )
        db.session.commit()
        return previous

    previous = _with_one_retry(_revise, document_id)
    logger.info("Document %s revised (%s -> pending)", document_id, previous,
                extra={"document_id": document_id, "principal_id": actor.id})
    notify_document_transition(document, "pending", actor_id=actor.id)
    return document


# ═══════════════════════════════════════════════════════════════
# Review
# ═══════════════════════════════════════════════════════════════

def review_document(document_id, action: str, *, principal, notes=None) -> dict:
    """
    Approve or reject the review stage the document is in.

    Returns:
        {"message", "newStatus", "previousStatus", "changed"}

    Raises:
        ValidationError, AuthorizationError, NotFoundError,
        InvalidTransitionError, ConflictingTransitionError (after one retry)
    """
    if action not in REVIEW_ACTIONS:
        raise ValidationError(
            f"Unknown action: {action!r}",
            details={"action": "invalid", "allowed": list(REVIEW_ACTIONS)},
        )
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string", details={"notes": "invalid"})
    notes = (notes or "").strip() or None
    if action == "reject" and not notes:
        raise ValidationError("notes are required when returning a document", details={"notes": "required"})

    document = get_visible_document(principal, document_id)
    return _with_one_retry(lambda: _review_once(document, action, principal, notes), document_id)


def _review_once(document: Document, action, principal, notes) -> dict:
    db.session.refresh(document)
    previous = document.status

    produced_by = _PRODUCED_BY.get(previous)
    if produced_by and produced_by[1] == action and _can_review(produced_by[0], principal, document.project_id):
        return {
            "message": f"Document already {previous.replace('_', ' ')}",
            "newStatus": previous,
            "previousStatus": previous,
            "changed": False,
        }

    stage = REVIEW_STAGES.get(previous)
    if stage is None:
        raise InvalidTransitionError(
            f"Document {document.id}", previous, None, "document is not awaiting review",
        )
    stage_role, targets = stage
    if not _can_review(stage_role, principal, document.project_id):
        if any(_can_review(r, principal, document.project_id) for r, _ in REVIEW_STAGES.values()):
            raise InvalidTransitionError(
                f"Document {document.id}", previous, targets[action],
                f"awaiting {role_display_label(stage_role)} review",
            )
        log_denial(principal, stage_role, "document review", document_id=document.id)
        raise AuthorizationError(principal.id, stage_role)

    target = targets[action]
    _cas_document_status(
        document, previous, target,
        review_notes=notes,
        reviewed_by_id=principal.id,
        reviewed_at=datetime.now(timezone.utc),
    )
    try_write_audit(
        entity_type="document", entity_id=document.id, project_id=document.project_id,
        action=f"document.{action}", actor_id=principal.id,
        diff={"status": {"old": previous, "new": target}, "notes": notes},
    )
    db.session.commit()

    logger.info(
        "Document %s %s -> %s by %s", document.id, previous, target, stage_role,
        extra={"document_id": document.id, "project_id": document.project_id,
               "principal_id": principal.id, "role": stage_role},
    )
    notify_document_transition(document, target, actor_id=principal.id)
    return {
        "message": f"Document {target.replace('_', ' ')}",
        "newStatus": target,
        "previousStatus": previous,
        "changed": True,
    }


# ═══════════════════════════════════════════════════════════════
# Summary
# ═══════════════════════════════════════════════════════════════

def document_summary(project: Project) -> dict:
    """Per-status counts for a project's documents and whether all are approved."""
    rows = db.session.execute(
        select(Document.status, func.count(Document.id))
        .where(Document.project_id == project.id)
        .group_by(Document.status)
    ).all()
    counts = {status: 0 for status in DOCUMENT_STATUSES}
    counts.update({status: n for status, n in rows})
    total = sum(counts.values())
    return {
        "project_id": project.id,
        "total": total,
        "by_status": counts,
        "all_approved": total > 0 and counts[DOCUMENT_FINAL_STATUS] == total,
    }
