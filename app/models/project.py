"""
Project domain model — SLF certification projects and their teams.

The project lead is owned by ``project_team_members``. ``Project.project_lead_id``
is a read-through cache maintained by ``project_lifecycle.sync_project_lead``
and must never be written from request input.
"""

from datetime import datetime, timezone

from app.models import db


# ── Status machine ───────────────────────────────────────────────────────────

PROJECT_STATUSES = (
    "draft",
    "submitted",
    "project_lead_review",
    "inspection_scheduled",
    "inspection_in_progress",
    "inspection_completed",
    "head_consultant_review",
    "client_review",
    "government_submitted",
    "slf_issued",
    "completed",
    "cancelled",
)

PROJECT_TERMINAL_STATUSES = {"slf_issued", "completed", "cancelled"}

PROJECT_TRANSITIONS = {
    "draft":                  ["submitted", "cancelled"],
    "submitted":              ["project_lead_review", "draft", "cancelled"],
    "project_lead_review":    ["inspection_scheduled", "submitted", "cancelled"],
    "inspection_scheduled":   ["inspection_in_progress", "project_lead_review", "cancelled"],
    "inspection_in_progress": ["inspection_completed", "inspection_scheduled", "cancelled"],
    "inspection_completed":   ["head_consultant_review", "cancelled"],
    "head_consultant_review": ["client_review", "inspection_completed", "cancelled"],
    "client_review":          ["government_submitted", "head_consultant_review", "cancelled"],
    "government_submitted":   ["slf_issued", "completed", "cancelled"],
    "slf_issued":             [],
    "completed":              [],
    "cancelled":              [],
}

# Display-only progress phases; several statuses share a phase.
PHASES = {
    1: "Document preparation",
    2: "Field inspection",
    3: "Report",
    4: "Review & approval",
    5: "Government submission",
}

STATUS_PHASE_MAP = {
    "draft": 1,
    "submitted": 1,
    "project_lead_review": 1,
    "inspection_scheduled": 2,
    "inspection_in_progress": 2,
    "inspection_completed": 2,
    "head_consultant_review": 3,
    "client_review": 4,
    "government_submitted": 5,
    "slf_issued": 5,
    "completed": 5,
    "cancelled": 0,
}

TEAM_ROLES = ("project_lead", "inspector", "drafter", "admin_team")


def validate_project_transition(old_status, new_status):
    """Return True if Project status transition is valid."""
    return new_status in PROJECT_TRANSITIONS.get(old_status, [])


# ═══════════════════════════════════════════════════════════════
# 1. PROJECT
# ═══════════════════════════════════════════════════════════════
class Project(db.Model):
    """A building certification (SLF) engagement for one client."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    client_id = db.Column(
        db.Integer,
        db.ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_lead_id = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Cached projection of the project_lead team assignment",
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(30), nullable=False, default="draft", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    # ── Building metadata ──
    building_function = db.Column(
        db.String(100), nullable=True,
        comment="hunian | usaha | sosial_budaya | khusus | campuran",
    )
    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(100), nullable=True)
    imb_number = db.Column(db.String(100), nullable=True, comment="Building permit number")
    floor_count = db.Column(db.Integer, nullable=True)
    building_area = db.Column(db.Float, nullable=True, comment="Gross floor area in m2")
    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    client = db.relationship("Client")
    project_lead = db.relationship("Profile", foreign_keys=[project_lead_id])
    team_members = db.relationship(
        "ProjectTeamMember", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def phase(self):
        return STATUS_PHASE_MAP.get(self.status, 0)

    def to_dict(self, include_team=False):
        phase = self.phase
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "client_id": self.client_id,
            "project_lead_id": self.project_lead_id,
            "created_by_id": self.created_by_id,
            "status": self.status,
            "version": self.version,
            "phase": phase,
            "phase_name": PHASES.get(phase),
            "progress": phase * 20,
            "building_function": self.building_function,
            "address": self.address,
            "city": self.city,
            "imb_number": self.imb_number,
            "floor_count": self.floor_count,
            "building_area": self.building_area,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_team:
            result["team"] = [m.to_dict() for m in self.team_members]
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status}]>"


# ═══════════════════════════════════════════════════════════════
# 2. TEAM ASSIGNMENTS
# ═══════════════════════════════════════════════════════════════
class ProjectTeamMember(db.Model):
    """Source of truth for who works on a project and in which capacity."""

    __tablename__ = "project_team_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    profile_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    team_role = db.Column(db.String(30), nullable=False)
    assigned_by_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "profile_id", "team_role", name="uq_team_member_project_profile_role",
        ),
        db.Index(
            "uq_team_single_project_lead",
            "project_id",
            unique=True,
            postgresql_where=db.text("team_role = 'project_lead'"),
            sqlite_where=db.text("team_role = 'project_lead'"),
        ),
    )

    profile = db.relationship("Profile", foreign_keys=[profile_id])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "profile_id": self.profile_id,
            "team_role": self.team_role,
            "full_name": self.profile.full_name if self.profile else None,
            "email": self.profile.email if self.profile else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
