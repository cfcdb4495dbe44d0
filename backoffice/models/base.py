"""
TenantModel — Abstract base class for tenant-scoped models.

Every back-office table except ``users`` inherits from TenantModel
instead of db.Model directly. This adds:
  - tenant_id FK column with index
  - query_for_tenant(tenant_id) classmethod
  - Composite index helper
"""

from datetime import datetime, timezone

from backoffice.models import db


def utcnow():
    return datetime.now(timezone.utc)


def iso(value):
    """Serialise a date/datetime for ``to_dict`` payloads."""
    return value.isoformat() if value else None


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a select() filtered by tenant_id."""
        return db.select(cls).where(cls.tenant_id == tenant_id)

    @classmethod
    def tenant_composite_index(cls, table_name, *extra_cols):
        """Helper to build a (tenant_id, ...) composite index."""
        name = f"ix_{table_name}_tenant_{'_'.join(extra_cols)}"
        return db.Index(name, "tenant_id", *extra_cols)
