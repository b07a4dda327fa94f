"""
Inspection Service — scheduling, field status, checklist and photos.

Inspection status machine::

    scheduled ─▶ in_progress ─▶ completed
        └──────────┴──────────▶ cancelled

Scheduling, starting and completing an inspection push the project status
forward (``inspection_scheduled`` / ``inspection_in_progress`` /
``inspection_completed``) when that edge is legal from where the project is.

Checklist responses are keyed on (inspection, item, responder): a second
submission for the same key overwrites the first (last write wins).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.auth import log_denial, principal_role
from app.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import try_write_audit
from app.models.inspection import (
    CHECKLIST_OPEN_STATUSES,
    DEFAULT_CHECKLIST_TEMPLATE,
    INSPECTION_STATUSES,
    ChecklistItem,
    ChecklistResponse,
    Inspection,
    InspectionPhoto,
    validate_inspection_transition,
)
from app.models.project import Project
from app.services.notification import notify_inspection_scheduled, notify_project_status_change
from app.services.project_lifecycle import (
    STATUS_MANAGER_ROLES,
    apply_inspection_event,
    is_team_member,
    lead_from_team,
)
from app.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

# Inspection status → project event it raises
_STATUS_EVENTS = {
    "in_progress": "inspection_started",
    "completed": "inspection_completed",
}

# Built-in SLF checklist (template ``slf_default``)
DEFAULT_CHECKLIST_ITEMS = [
    # code, category, question, mandatory
    ("ADM-01", "Administrasi", "Building permit (IMB/PBG) document is available and matches the site", True),
    ("ADM-02", "Administrasi", "As-built drawings are available", True),
    ("ADM-03", "Administrasi", "Previous SLF certificate (for renewal) is available", False),
    ("STR-01", "Struktur", "No visible cracks on columns and beams", True),
    ("STR-02", "Struktur", "Foundation shows no settlement or tilting", True),
    ("STR-03", "Struktur", "Roof structure is free of corrosion and deformation", True),
    ("ARS-01", "Arsitektur", "Building function matches the permitted function", True),
    ("ARS-02", "Arsitektur", "Facade and ceiling elements are securely fixed", False),
    ("KBK-01", "Proteksi Kebakaran", "Fire extinguishers are installed and within service date", True),
    ("KBK-02", "Proteksi Kebakaran", "Emergency exits and signage are unobstructed", True),
    ("KBK-03", "Proteksi Kebakaran", "Fire alarm / sprinkler system is operational", False),
    ("MEP-01", "Utilitas", "Electrical panels are labelled and grounded", True),
    ("MEP-02", "Utilitas", "Clean water and wastewater systems are functional", True),
    ("MEP-03", "Utilitas", "Lightning protection system is installed", False),
    ("AKS-01", "Kemudahan", "Accessible routes and facilities for disabled persons exist", False),
]


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════

def get_inspection_or_404(inspection_id) -> Inspection:
    inspection = db.session.get(Inspection, inspection_id)
    if inspection is None:
        raise NotFoundError(resource="Inspection", resource_id=inspection_id)
    return inspection


def _validate_geotag(data) -> tuple[float | None, float | None]:
    """Return (latitude, longitude) from ``{"geotag": {...}}`` or flat keys."""
    geotag = data.get("geotag") if isinstance(data.get("geotag"), dict) else data
    lat, lng = geotag.get("latitude"), geotag.get("longitude")
    if lat is None and lng is None:
        return None, None
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("geotag needs numeric latitude and longitude", details={"geotag": "invalid"})
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationError("geotag is out of range", details={"geotag": "out_of_range"})
    return lat, lng


def _can_work_on(inspection: Inspection, actor) -> bool:
    """Assigned inspector, project lead or a status manager."""
    if inspection.inspector_id == actor.id:
        return True
    if principal_role(actor) in STATUS_MANAGER_ROLES:
        return True
    return lead_from_team(inspection.project_id) == actor.id


def _require_worker(inspection, actor, what):
    if not _can_work_on(inspection, actor):
        log_denial(actor, "inspection team", what, inspection_id=inspection.id)
        raise AuthorizationError(actor.id, "assigned inspector or project lead")


def _can_schedule(project: Project, actor) -> bool:
    return principal_role(actor) in STATUS_MANAGER_ROLES or lead_from_team(project.id) == actor.id


# ═══════════════════════════════════════════════════════════════
# Scheduling & status
# ═══════════════════════════════════════════════════════════════

def schedule_inspection(project: Project, data: dict, actor) -> Inspection:
    """Schedule a field inspection for a team inspector."""
    if not _can_schedule(project, actor):
        log_denial(actor, "project lead", "inspection schedule", project_id=project.id)
        raise AuthorizationError(actor.id, "project lead or admin")

    inspector_id = data.get("inspector_id")
    if inspector_id is None:
        raise ValidationError("inspector_id is required", details={"inspector_id": "required"})
    if not is_team_member(project.id, inspector_id, "inspector"):
        raise ValidationError("inspector must be on the project team as inspector",
                              details={"inspector_id": "not_on_team"})

    start = parse_datetime(data.get("scheduled_start"))
    if start is None:
        raise ValidationError("scheduled_start is required (ISO-8601)",
                              details={"scheduled_start": "required"})
    end = None
    if data.get("scheduled_end") is not None:
        end = parse_datetime(data.get("scheduled_end"))
        if end is None:
            raise ValidationError("scheduled_end must be ISO-8601", details={"scheduled_end": "invalid"})
        if end <= start:
            raise ValidationError("scheduled_end must be after scheduled_start",
                                  details={"scheduled_end": "before_start"})

    template = data.get("checklist_template") or DEFAULT_CHECKLIST_TEMPLATE
    inspection = Inspection(
        project_id=project.id,
        inspector_id=inspector_id,
        checklist_template=template,
        scheduled_start=start,
        scheduled_end=end,
        summary=data.get("summary"),
        status="scheduled",
    )
    db.session.add(inspection)
    db.session.flush()
    try_write_audit(
        entity_type="inspection", entity_id=inspection.id, project_id=project.id,
        action="inspection.schedule", actor_id=actor.id,
        diff={"inspector_id": inspector_id, "scheduled_start": start},
    )
    project_change = apply_inspection_event(project, "inspection_scheduled", actor_id=actor.id)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    notify_inspection_scheduled(inspection, actor_id=actor.id)
    if project_change:
        notify_project_status_change(project, project_change["previous_status"],
                                     project_change["new_status"], actor_id=actor.id)
    return inspection


def transition_inspection(inspection_id, new_status: str, actor, summary: str | None = None) -> dict:
    """
    Execute an inspection status transition.

    Returns:
        {"inspection_id", "previous_status", "new_status", "project_transition"}
    """
    if new_status not in INSPECTION_STATUSES:
        raise ValidationError(f"Unknown inspection status: {new_status!r}",
                              details={"status": "invalid", "allowed": list(INSPECTION_STATUSES)})
    inspection = get_inspection_or_404(inspection_id)
    _require_worker(inspection, actor, f"inspection -> {new_status}")

    previous = inspection.status
    if not validate_inspection_transition(previous, new_status):
        raise InvalidTransitionError("inspection", previous, new_status)

    now = datetime.now(timezone.utc)
    inspection.status = new_status
    if new_status == "in_progress":
        inspection.started_at = now
    elif new_status == "completed":
        inspection.completed_at = now
    if summary is not None:
        inspection.summary = summary

    try_write_audit(
        entity_type="inspection", entity_id=inspection.id, project_id=inspection.project_id,
        action="inspection.status_change", actor_id=actor.id,
        diff={"status": {"old": previous, "new": new_status}},
    )
    project_change = None
    event = _STATUS_EVENTS.get(new_status)
    project = inspection.project
    if event:
        project_change = apply_inspection_event(project, event, actor_id=actor.id)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if project_change:
        notify_project_status_change(project, project_change["previous_status"],
                                     project_change["new_status"], actor_id=actor.id)
    return {
        "inspection_id": inspection.id,
        "previous_status": previous,
        "new_status": new_status,
        "project_transition": project_change,
    }


def list_inspections(project: Project) -> list[Inspection]:
    return db.session.execute(
        select(Inspection)
        .where(Inspection.project_id == project.id)
        .order_by(Inspection.scheduled_start.desc(), Inspection.id.desc())
    ).scalars().all()


# ═══════════════════════════════════════════════════════════════
# Checklist
# ═══════════════════════════════════════════════════════════════

def seed_default_checklist_items(template: str = DEFAULT_CHECKLIST_TEMPLATE) -> int:
    """Insert missing built-in checklist items. Returns the number inserted."""
    existing = set(db.session.execute(
        select(ChecklistItem.code).where(ChecklistItem.template == template)
    ).scalars())
    created = 0
    for order, (code, category, question, mandatory) in enumerate(DEFAULT_CHECKLIST_ITEMS, start=1):
        if code in existing:
            continue
        db.session.add(ChecklistItem(
            template=template, code=code, category=category, question=question,
            display_order=order * 10, is_mandatory=mandatory,
        ))
        created += 1
    db.session.commit()
    return created


def list_checklist_items(template: str = DEFAULT_CHECKLIST_TEMPLATE, category: str | None = None):
    stmt = select(ChecklistItem).where(ChecklistItem.template == template)
    if category:
        stmt = stmt.where(ChecklistItem.category == category)
    return db.session.execute(
        stmt.order_by(ChecklistItem.display_order, ChecklistItem.id)
    ).scalars().all()


def _upsert_statement(values: dict):
    """Dialect-native INSERT .. ON CONFLICT DO UPDATE on the response key."""
    dialect = db.session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(ChecklistResponse).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=["inspection_id", "checklist_item_id", "responder_id"],
        set_={
            "response": stmt.excluded.response,
            "notes": stmt.excluded.notes,
            "latitude": stmt.excluded.latitude,
            "longitude": stmt.excluded.longitude,
            "updated_at": stmt.excluded.updated_at,
        },
    )


def _prepare_response(inspection: Inspection, entry: dict, responder_id: int) -> dict:
    if not isinstance(entry, dict):
        raise ValidationError("each response must be an object", details={"responses": "invalid"})
    item_id = entry.get("checklist_item_id")
    if item_id is None:
        raise ValidationError("checklist_item_id is required", details={"checklist_item_id": "required"})
    item = db.session.get(ChecklistItem, item_id)
    if item is None or item.template != inspection.checklist_template:
        raise ValidationError("checklist_item_id is not part of this inspection's checklist",
                              details={"checklist_item_id": "invalid"})
    payload = entry.get("response")
    if not isinstance(payload, dict):
        raise ValidationError("response must be an object", details={"response": "invalid"})
    lat, lng = _validate_geotag(entry)
    now = datetime.now(timezone.utc)
    return {
        "inspection_id": inspection.id,
        "checklist_item_id": item.id,
        "responder_id": responder_id,
        "response": payload,
        "notes": entry.get("notes"),
        "latitude": lat,
        "longitude": lng,
        "created_at": now,
        "updated_at": now,
    }


def upsert_checklist_responses(inspection_id, entries: list[dict], actor) -> list[ChecklistResponse]:
    """
    Store one or more checklist answers for *actor*; last write wins per item.

    The whole batch is validated before anything is written.
    """
    inspection = get_inspection_or_404(inspection_id)
    _require_worker(inspection, actor, "checklist response")
    if inspection.status not in CHECKLIST_OPEN_STATUSES:
        raise InvalidTransitionError("inspection", inspection.status, None,
                                     "checklist responses are closed for this inspection")
    if not entries:
        raise ValidationError("at least one response is required", details={"responses": "required"})

    rows = [_prepare_response(inspection, entry, actor.id) for entry in entries]
    # Within one batch the later entry for an item wins as well
    rows = list({row["checklist_item_id"]: row for row in rows}.values())

    try:
        for row in rows:
            db.session.execute(_upsert_statement(row))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    item_ids = [row["checklist_item_id"] for row in rows]
    return db.session.execute(
        select(ChecklistResponse)
        .where(ChecklistResponse.inspection_id == inspection.id)
        .where(ChecklistResponse.responder_id == actor.id)
        .where(ChecklistResponse.checklist_item_id.in_(item_ids))
        .order_by(ChecklistResponse.checklist_item_id)
        .execution_options(populate_existing=True)
    ).scalars().all()


def list_checklist_responses(inspection: Inspection, responder_id: int | None = None):
    stmt = select(ChecklistResponse).where(ChecklistResponse.inspection_id == inspection.id)
    if responder_id is not None:
        stmt = stmt.where(ChecklistResponse.responder_id == responder_id)
    return db.session.execute(
        stmt.order_by(ChecklistResponse.checklist_item_id, ChecklistResponse.responder_id)
    ).scalars().all()


def checklist_summary(inspection: Inspection) -> dict:
    """Completion of the inspection's checklist across all responders."""
    items = list_checklist_items(inspection.checklist_template)
    answered_ids = set(db.session.execute(
        select(ChecklistResponse.checklist_item_id)
        .where(ChecklistResponse.inspection_id == inspection.id)
        .distinct()
    ).scalars())

    by_category: dict[str, dict] = {}
    for item in items:
        bucket = by_category.setdefault(item.category, {"total": 0, "answered": 0})
        bucket["total"] += 1
        if item.id in answered_ids:
            bucket["answered"] += 1

    total = len(items)
    answered = sum(1 for item in items if item.id in answered_ids)
    return {
        "inspection_id": inspection.id,
        "template": inspection.checklist_template,
        "total_items": total,
        "answered": answered,
        "missing_mandatory": [i.code for i in items if i.is_mandatory and i.id not in answered_ids],
        "by_category": by_category,
        "completion_percent": round(answered * 100 / total, 1) if total else 0.0,
    }


# ═══════════════════════════════════════════════════════════════
# Photos
# ═══════════════════════════════════════════════════════════════

def add_photo(data: dict, actor, inspection_id=None) -> InspectionPhoto:
    """
    Register an uploaded photo. The inspection reference is mandatory and
    the project is taken from the inspection, never from the request.
    """
    inspection_id = inspection_id if inspection_id is not None else data.get("inspection_id")
    if inspection_id is None:
        raise ValidationError("inspection_id is required", details={"inspection_id": "required"})
    inspection = get_inspection_or_404(inspection_id)
    _require_worker(inspection, actor, "photo upload")

    storage_path = (data.get("storage_path") or "").strip()
    if not storage_path:
        raise ValidationError("storage_path is required", details={"storage_path": "required"})

    item_id = data.get("checklist_item_id")
    if item_id is not None and db.session.get(ChecklistItem, item_id) is None:
        raise ValidationError("checklist_item_id does not exist", details={"checklist_item_id": "invalid"})

    taken_at = None
    if data.get("taken_at") is not None:
        taken_at = parse_datetime(data.get("taken_at"))
        if taken_at is None:
            raise ValidationError("taken_at must be ISO-8601", details={"taken_at": "invalid"})

    lat, lng = _validate_geotag(data)
    photo = InspectionPhoto(
        inspection_id=inspection.id,
        project_id=inspection.project_id,
        checklist_item_id=item_id,
        uploaded_by_id=actor.id,
        storage_path=storage_path,
        caption=data.get("caption"),
        latitude=lat,
        longitude=lng,
        taken_at=taken_at,
    )
    db.session.add(photo)
    db.session.commit()
    return photo


def list_photos(inspection: Inspection):
    return db.session.execute(
        select(InspectionPhoto)
        .where(InspectionPhoto.inspection_id == inspection.id)
        .order_by(InspectionPhoto.created_at, InspectionPhoto.id)
    ).scalars().all()


def photo_count(inspection: Inspection) -> int:
    return db.session.execute(
        select(func.count(InspectionPhoto.id)).where(InspectionPhoto.inspection_id == inspection.id)
    ).scalar_one()
