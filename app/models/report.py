"""
Report domain models.

Models:
    - Report: inspection findings that pass through the approval chain
    - Approval: append-only log of approve/reject decisions on a report

Report statuses are open-ended strings of the form ``<role>_approved`` /
``<role>_rejected`` for every role in the configured approval sequence, plus
``draft``, ``submitted``, ``issued`` and ``closed``.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_ACTIONS = ("approve", "reject")

ACTION_SUFFIX = {"approve": "approved", "reject": "rejected"}


class Report(db.Model):
    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    inspection_id = db.Column(
        db.Integer, db.ForeignKey("inspections.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    supersedes_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="SET NULL"), nullable=True,
        comment="Rejected report this draft replaces",
    )
    title = db.Column(db.String(300), nullable=False)
    findings = db.Column(db.Text, default="")
    recommendations = db.Column(db.Text, default="")
    status = db.Column(db.String(40), nullable=False, default="draft", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", backref=db.backref("reports", lazy="dynamic"))
    author = db.relationship("Profile", foreign_keys=[author_id])
    approvals = db.relationship(
        "Approval", backref="report", lazy="dynamic",
        order_by="Approval.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "inspection_id": self.inspection_id,
            "author_id": self.author_id,
            "supersedes_id": self.supersedes_id,
            "title": self.title,
            "findings": self.findings,
            "recommendations": self.recommendations,
            "status": self.status,
            "version": self.version,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "issued_at": self.issued_at.isoformat() if self.issued_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Report {self.id}: {self.title[:40]} [{self.status}]>"


class Approval(db.Model):
    """One decision by one role. Rows are inserted, never updated."""

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    role = db.Column(db.String(40), nullable=False)
    action = db.Column(db.String(10), nullable=False, comment="approve | reject")
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    approver = db.relationship("Profile", foreign_keys=[approver_id])

    def to_dict(self):
        return {
            "id": self.id,
            "report_id": self.report_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver.full_name if self.approver else None,
            "role": self.role,
            "action": self.action,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
