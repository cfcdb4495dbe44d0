"""
Auth Models — tenants, users, per-tenant role assignments.

A User is a global identity (one row per email). Membership in a tenant is
expressed purely through UserRole rows: a user "belongs" to every tenant
in which they hold at least one role.
"""

from backoffice.models import db
from backoffice.models.base import iso, utcnow
from backoffice.models.soft_delete import SoftDeleteMixin


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(SoftDeleteMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    settings = db.Column(db.JSON, default=dict)
    # Per-tenant monotonic counters, incremented atomically in SQL
    workflow_seq = db.Column(db.Integer, default=0, nullable=False)
    invoice_seq = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "settings": dict(self.settings or {}),
            "deleted_at": iso(self.deleted_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Tenant {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
USER_STATUSES = ("active", "invited", "disabled")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    display_name = db.Column(db.String(200), nullable=False, default="")
    status = db.Column(db.String(20), default="active", nullable=False)
    invite_token_hash = db.Column(db.String(128))
    reset_token_hash = db.Column(db.String(128))
    reset_expires_at = db.Column(db.DateTime(timezone=True))
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="select", cascade="all, delete-orphan",
    )

    def roles_in(self, tenant_id):
        """Role names this user holds in *tenant_id*."""
        return sorted(ur.role for ur in self.user_roles if ur.tenant_id == tenant_id)

    def to_dict(self, tenant_id=None):
        d = {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "status": self.status,
            "last_login_at": iso(self.last_login_at),
            "created_at": iso(self.created_at),
        }
        if tenant_id is not None:
            d["roles"] = self.roles_in(tenant_id)
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. USER_ROLES (tenant-scoped role assignment)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(
        db.String(30), nullable=False,
        comment="member | approver | pm | accounting | tenant_admin | it_admin",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "user_id", "role", name="uq_user_role_tenant"),
    )

    user = db.relationship("User", back_populates="user_roles")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "role": self.role,
        }
