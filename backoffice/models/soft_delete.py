"""
Soft Delete Mixin.

Adds a ``deleted_at`` timestamp column. Tenants use it:
deleting a tenant only stamps ``deleted_at``; the row stays recoverable
until an external purge job removes it.

Usage:
    class Tenant(SoftDeleteMixin, db.Model):
        ...

    tenant.soft_delete()
    db.session.commit()
"""

from datetime import datetime, timedelta, timezone

from backoffice.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def deleted_within(self, days: int) -> bool:
        """True if the record was soft-deleted less than *days* days ago."""
        if self.deleted_at is None:
            return False
        deleted_at = self.deleted_at
        if deleted_at.tzinfo is None:
            deleted_at = deleted_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - deleted_at < timedelta(days=days)
