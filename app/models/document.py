"""
Project document models.

Documents are the permit paperwork a project collects before inspection
(land title, building permit, drawings, structural calculations, ...). Each
upload passes a three-step verification::

    pending ─▶ verified_by_admin_team ─▶ approved_by_pl ─▶ approved_by_hc
       │                │                      │
       ▼                ▼                      ▼
    revision_requested  rejected_by_pl      revision_requested_by_hc

Every returned status goes back to ``pending`` when a corrected file is
uploaded. The file itself lives in the object store; only its key is kept.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = (
    "pending",
    "verified_by_admin_team",
    "revision_requested",
    "approved_by_pl",
    "rejected_by_pl",
    "approved_by_hc",
    "revision_requested_by_hc",
)

DOCUMENT_CATEGORIES = (
    "land_certificate",
    "building_permit",
    "architectural_drawing",
    "structural_calculation",
    "mep_drawing",
    "fire_protection",
    "environmental",
    "ownership",
    "other",
)

# Statuses a document is sent back with; the uploader answers with a new file
DOCUMENT_RETURNED_STATUSES = frozenset({"revision_requested", "rejected_by_pl", "revision_requested_by_hc"})

DOCUMENT_FINAL_STATUS = "approved_by_hc"


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    uploaded_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="other")
    storage_path = db.Column(db.String(500), nullable=False, comment="Object key in the file store")
    mime_type = db.Column(db.String(100), nullable=True)
    file_size = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(40), nullable=False, default="pending", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    revision = db.Column(db.Integer, nullable=False, default=1, comment="Bumped on every re-upload")
    review_notes = db.Column(db.Text, nullable=True)
    reviewed_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", backref=db.backref("documents", lazy="dynamic"))
    uploaded_by = db.relationship("Profile", foreign_keys=[uploaded_by_id])
    reviewed_by = db.relationship("Profile", foreign_keys=[reviewed_by_id])

    @property
    def is_returned(self):
        return self.status in DOCUMENT_RETURNED_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "uploaded_by_id": self.uploaded_by_id,
            "name": self.name,
            "category": self.category,
            "storage_path": self.storage_path,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "status": self.status,
            "version": self.version,
            "revision": self.revision,
            "review_notes": self.review_notes,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.name[:40]} [{self.status}]>"
