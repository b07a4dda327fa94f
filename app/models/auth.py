"""
Principal Models — clients and user profiles.

A Profile is the local record paired with an identity issued by the external
authentication provider. Profiles are never hard-deleted while other rows
reference them; deletion archives the row (see ``user_service.delete_profile``).
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

PROFILE_STATUSES = ("pending", "approved", "rejected", "deleted")


# ═══════════════════════════════════════════════════════════════
# 1. CLIENTS
# ═══════════════════════════════════════════════════════════════
class Client(db.Model):
    """Building owner / applicant organisation that projects belong to."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    company_name = db.Column(db.String(200))
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("Profile", back_populates="client", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "company_name": self.company_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. PROFILES
# ═══════════════════════════════════════════════════════════════
class Profile(SoftDeleteMixin, db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(
        db.String(64), unique=True, nullable=True,
        comment="Subject identifier issued by the authentication provider",
    )
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    role = db.Column(db.String(40), nullable=False, default="client")
    specialization = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending")
    rejection_reason = db.Column(db.Text)
    approved_at = db.Column(db.DateTime(timezone=True))
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Linked client organisation for principals with role=client",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        # One live profile per email; archived rows carry a renamed email anyway
        db.Index(
            "uq_profiles_email_active",
            "email",
            unique=True,
            postgresql_where=db.text("deleted_at IS NULL"),
            sqlite_where=db.text("deleted_at IS NULL"),
        ),
        db.Index("ix_profiles_role_status", "role", "status"),
    )

    client = db.relationship("Client", back_populates="users")

    @property
    def is_approved(self):
        return self.status == "approved" and not self.is_deleted

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "specialization": self.specialization,
            "status": self.status,
            "client_id": self.client_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Profile {self.id}: {self.email} ({self.role})>"
