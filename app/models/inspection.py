"""
Inspection domain models.

Models:
    - Inspection: scheduled field visit to a project site
    - ChecklistItem: static evaluation criterion (reference data)
    - ChecklistResponse: one answer per (inspection, item, responder)
    - InspectionPhoto: geotagged evidence photo, always linked to an inspection
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

INSPECTION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")

INSPECTION_TRANSITIONS = {
    "scheduled":   ["in_progress", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed":   [],
    "cancelled":   [],
}

# Responses may only be written while the visit is still open.
CHECKLIST_OPEN_STATUSES = {"scheduled", "in_progress"}

DEFAULT_CHECKLIST_TEMPLATE = "slf_default"


def validate_inspection_transition(old_status, new_status):
    """Return True if Inspection status transition is valid."""
    return new_status in INSPECTION_TRANSITIONS.get(old_status, [])


def _geotag_dict(obj):
    if obj.latitude is None or obj.longitude is None:
        return None
    return {"latitude": obj.latitude, "longitude": obj.longitude}


# ═══════════════════════════════════════════════════════════════
# 1. INSPECTION
# ═══════════════════════════════════════════════════════════════
class Inspection(db.Model):
    __tablename__ = "inspections"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    inspector_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    checklist_template = db.Column(db.String(50), nullable=False, default=DEFAULT_CHECKLIST_TEMPLATE)
    scheduled_start = db.Column(db.DateTime(timezone=True), nullable=False)
    scheduled_end = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="scheduled", index=True)
    summary = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", backref=db.backref("inspections", lazy="dynamic"))
    inspector = db.relationship("Profile", foreign_keys=[inspector_id])
    responses = db.relationship(
        "ChecklistResponse", backref="inspection", lazy="dynamic", cascade="all, delete-orphan",
    )
    photos = db.relationship(
        "InspectionPhoto", backref="inspection", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "inspector_id": self.inspector_id,
            "checklist_template": self.checklist_template,
            "scheduled_start": self.scheduled_start.isoformat() if self.scheduled_start else None,
            "scheduled_end": self.scheduled_end.isoformat() if self.scheduled_end else None,
            "status": self.status,
            "summary": self.summary,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Inspection {self.id}: project={self.project_id} [{self.status}]>"


# ═══════════════════════════════════════════════════════════════
# 2. CHECKLIST
# ═══════════════════════════════════════════════════════════════
class ChecklistItem(db.Model):
    """Static evaluation criterion; seeded, never edited through the API."""

    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    template = db.Column(db.String(50), nullable=False, default=DEFAULT_CHECKLIST_TEMPLATE, index=True)
    code = db.Column(db.String(30), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    question = db.Column(db.Text, nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint("template", "code", name="uq_checklist_item_template_code"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template": self.template,
            "code": self.code,
            "category": self.category,
            "question": self.question,
            "display_order": self.display_order,
            "is_mandatory": self.is_mandatory,
        }


class ChecklistResponse(db.Model):
    __tablename__ = "checklist_responses"

    id = db.Column(db.Integer, primary_key=True)
    inspection_id = db.Column(
        db.Integer, db.ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    checklist_item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="CASCADE"), nullable=False,
    )
    responder_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
    )
    response = db.Column(db.JSON, nullable=False, default=dict, comment="Structured answer per item")
    notes = db.Column(db.Text, nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "inspection_id", "checklist_item_id", "responder_id",
            name="uq_checklist_response_inspection_item_responder",
        ),
    )

    item = db.relationship("ChecklistItem")

    def to_dict(self):
        return {
            "id": self.id,
            "inspection_id": self.inspection_id,
            "checklist_item_id": self.checklist_item_id,
            "item_code": self.item.code if self.item else None,
            "responder_id": self.responder_id,
            "response": self.response,
            "notes": self.notes,
            "geotag": _geotag_dict(self),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. PHOTOS
# ═══════════════════════════════════════════════════════════════
class InspectionPhoto(db.Model):
    __tablename__ = "inspection_photos"

    id = db.Column(db.Integer, primary_key=True)
    inspection_id = db.Column(
        db.Integer, db.ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    checklist_item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="SET NULL"), nullable=True,
    )
    uploaded_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    storage_path = db.Column(db.String(500), nullable=False, comment="Object key in the file store")
    caption = db.Column(db.String(300), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    taken_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "inspection_id": self.inspection_id,
            "project_id": self.project_id,
            "checklist_item_id": self.checklist_item_id,
            "uploaded_by_id": self.uploaded_by_id,
            "storage_path": self.storage_path,
            "caption": self.caption,
            "geotag": _geotag_dict(self),
            "taken_at": self.taken_at.isoformat() if self.taken_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
