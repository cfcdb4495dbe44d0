"""
Audit Log query service (read side of the audit trail).

Writes go through ``backoffice.models.audit.write_audit``; this module only
filters and paginates, for it_admin / tenant_admin.
"""

from datetime import datetime, time, timedelta, timezone

from sqlalchemy import select

from backoffice.core.auth_context import ADMIN_ROLES, AuthContext
from backoffice.models import db
from backoffice.models.audit import AuditAction, AuditLog
from backoffice.models.auth import User, UserRole
from backoffice.services.permission import require_role, require_tenant
from backoffice.utils.helpers import parse_date_input, parse_int

DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 200


def _day_start(d):
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def list_audit_logs(ctx: AuthContext, filters: dict | None = None) -> dict:
    """
    Return paginated audit logs of the caller's tenant, newest first.

    Filters:
        user_id        — actor
        action         — exact action string
        resource_type  — exact resource type
        date_from      — inclusive (start of day, UTC)
        date_to        — inclusive (end of day, UTC)
        page           — page number (default 1)
        per_page       — items per page (default 50, max 200)
    """
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES, message="Audit logs are restricted to administrators")
    filters = filters or {}

    q = select(AuditLog).where(AuditLog.tenant_id == tenant_id)

    # ── Filters ──────────────────────────────────────────────────────────
    user_id = parse_int(filters.get("user_id"))
    if user_id is not None:
        q = q.where(AuditLog.user_id == user_id)
    if filters.get("action"):
        q = q.where(AuditLog.action == filters["action"])
    if filters.get("resource_type"):
        q = q.where(AuditLog.resource_type == filters["resource_type"])

    date_from = parse_date_input(filters.get("date_from"), "ERR-VAL-010", "date_from")
    if date_from:
        q = q.where(AuditLog.created_at >= _day_start(date_from))
    date_to = parse_date_input(filters.get("date_to"), "ERR-VAL-010", "date_to")
    if date_to:
        q = q.where(AuditLog.created_at < _day_start(date_to + timedelta(days=1)))

    # ── Ordering / pagination ────────────────────────────────────────────
    q = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    page = max(1, parse_int(filters.get("page")) or 1)
    per_page = min(MAX_PER_PAGE, max(1, parse_int(filters.get("per_page")) or DEFAULT_PER_PAGE))

    paginated = db.paginate(q, page=page, per_page=per_page, error_out=False)
    return {
        "audit_logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    }


def get_audit_filter_options(ctx: AuthContext) -> dict:
    """Choices for the audit log filter controls."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES, message="Audit logs are restricted to administrators")

    users = db.session.execute(
        select(User.id, User.display_name)
        .join(UserRole, UserRole.user_id == User.id)
        .where(UserRole.tenant_id == tenant_id)
        .distinct()
        .order_by(User.display_name)
    ).all()
    actions = [a.value for a in AuditAction]
    return {
        "users": [{"id": uid, "display_name": name} for uid, name in users],
        "actions": actions,
        "resource_types": sorted({a.resource_type for a in AuditAction}),
    }
