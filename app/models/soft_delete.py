"""
Soft Delete Mixin.

Adds a ``deleted_at`` timestamp column and query helpers. Models using the
mixin are archived instead of physically removed, so rows referenced by
approvals, reports and notifications keep their foreign keys valid.

Usage:
    class Profile(SoftDeleteMixin, db.Model):
        ...

    profile.soft_delete()
    db.session.commit()

    Profile.query_active().all()
"""

from datetime import datetime, timezone

from app.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
