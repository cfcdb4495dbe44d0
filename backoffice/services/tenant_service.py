"""
Tenant Service — organisation profile, settings and soft delete.

Permissions:
    read / update / settings → tenant_admin or it_admin
    delete / restore         → it_admin

A deleted tenant keeps its rows; ``deleted_at`` marks it and the tenant
middleware refuses requests for it. Restore is possible within
TENANT_RESTORE_DAYS.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy import func, select

from backoffice.core.auth_context import ADMIN_ROLES, AuthContext, Role
from backoffice.core.exceptions import NotFoundError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.auth import Tenant, UserRole
from backoffice.models.project import Project
from backoffice.models.workflow import Workflow
from backoffice.services.permission import require_role, require_tenant
from backoffice.utils.helpers import clean_str, db_commit_or_raise

logger = logging.getLogger(__name__)

TENANT_NAME_MAX = 100
DEFAULT_RESTORE_DAYS = 30


def _get_tenant(tenant_id: int, *, include_deleted=False) -> Tenant:
    q = select(Tenant).where(Tenant.id == tenant_id).execution_options(populate_existing=True)
    if not include_deleted:
        q = q.where(Tenant.deleted_at.is_(None))
    tenant = db.session.execute(q).scalar_one_or_none()
    if tenant is None:
        raise NotFoundError("ERR-SYS-001", "Tenant", tenant_id)
    return tenant


def get_tenant_detail(ctx: AuthContext) -> dict:
    """Tenant profile plus headline counts (users, projects, workflows this month)."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES)
    tenant = _get_tenant(tenant_id)

    month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    users = db.session.execute(
        select(func.count(func.distinct(UserRole.user_id))).where(UserRole.tenant_id == tenant_id)
    ).scalar() or 0
    projects = db.session.execute(
        select(func.count(Project.id)).where(Project.tenant_id == tenant_id)
    ).scalar() or 0
    workflows = db.session.execute(
        select(func.count(Workflow.id)).where(
            Workflow.tenant_id == tenant_id, Workflow.created_at >= month_start,
        )
    ).scalar() or 0

    result = tenant.to_dict()
    result["stats"] = {
        "active_users": users,
        "project_count": projects,
        "monthly_workflows": workflows,
    }
    return result


def update_tenant(ctx: AuthContext, data: dict) -> dict:
    """Rename the tenant; ``contact_email`` and ``address`` live in settings."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES)

    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("ERR-VAL-001", "Organisation name is required", details={"name": "required"})
    if len(name) > TENANT_NAME_MAX:
        raise ValidationError(
            "ERR-VAL-002", f"Organisation name must be {TENANT_NAME_MAX} characters or fewer",
            details={"name": "too_long"},
        )
    contact_email = clean_str(data.get("contact_email"))
    if contact_email:
        try:
            contact_email = validate_email(contact_email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(
                "ERR-VAL-003", "Enter a valid email address", details={"contact_email": str(exc)},
            ) from None

    tenant = _get_tenant(tenant_id)
    before = tenant.to_dict()

    tenant.name = name
    settings = dict(tenant.settings or {})
    if "contact_email" in data:
        settings["contact_email"] = contact_email or None
    if "address" in data:
        settings["address"] = clean_str(data.get("address")) or None
    tenant.settings = settings
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TENANT_UPDATE,
        resource_type="tenant",
        resource_id=tenant_id,
        before=before,
        after=tenant.to_dict(),
    )
    db_commit_or_raise()
    return tenant.to_dict()


def update_tenant_settings(ctx: AuthContext, settings: dict) -> dict:
    """Merge *settings* into the stored settings document."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, ADMIN_ROLES)
    settings = dict(settings or {})

    if "fiscal_year_start" in settings and settings["fiscal_year_start"] is not None:
        try:
            month = int(settings["fiscal_year_start"])
        except (TypeError, ValueError):
            month = 0
        if not 1 <= month <= 12:
            raise ValidationError(
                "ERR-VAL-004", "Fiscal year start month must be between 1 and 12",
                details={"fiscal_year_start": settings["fiscal_year_start"]},
            )
        settings["fiscal_year_start"] = month

    tenant = _get_tenant(tenant_id)
    current = dict(tenant.settings or {})
    merged = {**current, **settings}
    tenant.settings = merged
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TENANT_SETTINGS_CHANGE,
        resource_type="tenant",
        resource_id=tenant_id,
        before={"settings": current},
        after={"settings": merged},
    )
    db_commit_or_raise()
    return tenant.to_dict()


def delete_tenant(ctx: AuthContext, confirmation) -> dict:
    """Soft-delete the caller's tenant. *confirmation* must equal its name."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, {Role.IT_ADMIN})
    tenant = _get_tenant(tenant_id)

    if clean_str(confirmation) != tenant.name:
        raise ValidationError("ERR-VAL-005", "Type the tenant name exactly to confirm deletion")

    tenant.soft_delete()
    db.session.flush()
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TENANT_SOFT_DELETE,
        resource_type="tenant",
        resource_id=tenant_id,
        before={"name": tenant.name},
        after={"deleted_at": tenant.deleted_at.isoformat()},
    )
    db_commit_or_raise()

    logger.warning(
        "Tenant %s soft-deleted by user %s", tenant_id, ctx.user_id,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "tenant.soft_delete"},
    )
    return tenant.to_dict()


def restore_tenant(ctx: AuthContext) -> dict:
    """Undo a soft delete while still inside the restore window."""
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, {Role.IT_ADMIN})
    tenant = _get_tenant(tenant_id, include_deleted=True)
    if not tenant.is_deleted:
        return tenant.to_dict()

    days = current_app.config.get("TENANT_RESTORE_DAYS", DEFAULT_RESTORE_DAYS)
    if not tenant.deleted_within(days):
        raise ValidationError("ERR-VAL-006", f"Tenants can only be restored within {days} days of deletion")

    tenant.restore()
    db_commit_or_raise()
    logger.info(
        "Tenant %s restored", tenant_id,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "tenant.restore"},
    )
    return tenant.to_dict()
