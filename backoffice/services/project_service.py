"""
Project Service — projects and their member lists.

The PM is always a member: ``create_project`` inserts the PM's
ProjectMember row in the same transaction as the project, and
``remove_member`` refuses to remove the PM.
"""

import logging

from sqlalchemy import select

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, ConflictError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.auth import User, UserRole
from backoffice.models.project import PROJECT_NAME_MAX, PROJECT_STATUSES, Project, ProjectMember
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.services.permission import has_role, require_role, require_tenant, user_in_tenant
from backoffice.services.state_machine import apply_transition
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)

PROJECT_MANAGER_ROLES = frozenset({Role.PM, Role.TENANT_ADMIN})


def _get_project(ctx: AuthContext, project_id) -> Project:
    return get_scoped(Project, project_id, tenant_id=require_tenant(ctx), code="ERR-PJ-001", resource="Project")


def can_manage_project(ctx: AuthContext, project: Project) -> bool:
    """The project's PM or a tenant_admin."""
    return project.pm_id == ctx.user_id or has_role(ctx, project.tenant_id, {Role.TENANT_ADMIN})


def _require_manager(ctx: AuthContext, project: Project):
    if not can_manage_project(ctx, project):
        raise AuthorizationError("ERR-AUTH-003", "Only the project manager can modify this project")


def _validate_project_fields(data: dict, tenant_id: int) -> dict:
    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("ERR-VAL-001", "Project name is required", details={"name": "required"})
    if len(name) > PROJECT_NAME_MAX:
        raise ValidationError(
            "ERR-VAL-002", f"Project name must be {PROJECT_NAME_MAX} characters or fewer",
            details={"name": "too_long"},
        )

    start_date = parse_date_input(data.get("start_date"), "ERR-VAL-003", "start_date")
    end_date = parse_date_input(data.get("end_date"), "ERR-VAL-003", "end_date")
    if start_date and end_date and end_date < start_date:
        raise ValidationError(
            "ERR-VAL-003", "End date must be on or after the start date",
            details={"end_date": "before_start_date"},
        )

    pm_id = parse_int(data.get("pm_id"))
    if pm_id is None or not user_in_tenant(pm_id, tenant_id):
        raise ValidationError("ERR-VAL-004", "The selected project manager was not found", details={"pm_id": pm_id})

    return {
        "name": name,
        "description": data.get("description") or None,
        "start_date": start_date,
        "end_date": end_date,
        "pm_id": pm_id,
    }


# ── Create / update ──────────────────────────────────────────────────────────


def create_project(ctx: AuthContext, data: dict) -> dict:
    """Create a project (status ``planning``) with its PM as first member."""
    tenant_id = require_tenant(ctx)
    require_role(
        ctx, tenant_id, PROJECT_MANAGER_ROLES,
        code="ERR-AUTH-003", message="Only project managers can create projects",
    )
    data = dict(data)
    if data.get("pm_id") in (None, ""):
        data["pm_id"] = ctx.user_id
    fields = _validate_project_fields(data, tenant_id)

    project = Project(tenant_id=tenant_id, status="planning", created_by=ctx.user_id, **fields)
    db.session.add(project)
    db.session.flush()
    db.session.add(ProjectMember(tenant_id=tenant_id, project_id=project.id, user_id=project.pm_id))
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.PROJECT_CREATE,
        resource_type="project",
        resource_id=project.id,
        after=project.to_dict(),
    )
    db_commit_or_raise()

    logger.info(
        "Project %s created", project.id,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "project.create"},
    )
    return project.to_dict(include_members=True)


def update_project(ctx: AuthContext, project_id, data: dict) -> dict:
    """
    Update project fields and/or status.

    A status change goes through the transition table and is audited as
    ``project.status_change``; a plain edit as ``project.update``.
    """
    project = _get_project(ctx, project_id)
    _require_manager(ctx, project)
    before = project.to_dict()

    merged = {
        "name": data.get("name", project.name),
        "description": data.get("description", project.description),
        "start_date": data.get("start_date", project.start_date),
        "end_date": data.get("end_date", project.end_date),
        "pm_id": data.get("pm_id", project.pm_id),
    }
    fields = _validate_project_fields(merged, project.tenant_id)

    new_status = clean_str(data.get("status")) or project.status
    if new_status not in PROJECT_STATUSES:
        raise ValidationError("ERR-VAL-005", f"status must be one of {', '.join(PROJECT_STATUSES)}")
    status_changed = new_status != project.status

    for key, value in fields.items():
        setattr(project, key, value)
    if fields["pm_id"] not in project.member_ids():
        db.session.add(ProjectMember(tenant_id=project.tenant_id, project_id=project.id, user_id=fields["pm_id"]))
    db.session.flush()

    if status_changed:
        apply_transition(project, "project", new_status)

    write_audit(
        ctx.user_id,
        tenant_id=project.tenant_id,
        action=AuditAction.PROJECT_STATUS_CHANGE if status_changed else AuditAction.PROJECT_UPDATE,
        resource_type="project",
        resource_id=project.id,
        before=before,
        after=project.to_dict(),
    )
    db_commit_or_raise()
    return project.to_dict(include_members=True)


# ── Members ──────────────────────────────────────────────────────────────────


def add_member(ctx: AuthContext, project_id, user_id) -> dict:
    project = _get_project(ctx, project_id)
    _require_manager(ctx, project)

    user_id = parse_int(user_id)
    if user_id is None or not user_in_tenant(user_id, project.tenant_id):
        raise ValidationError("ERR-VAL-005", "The selected user was not found", details={"user_id": user_id})
    if user_id in project.member_ids():
        raise ConflictError("ERR-PJ-003", "The user is already a project member")

    member = ProjectMember(tenant_id=project.tenant_id, project_id=project.id, user_id=user_id)
    db.session.add(member)
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=project.tenant_id,
        action=AuditAction.PROJECT_ADD_MEMBER,
        resource_type="project",
        resource_id=project.id,
        after={"user_id": user_id},
    )
    db_commit_or_raise()
    return member.to_dict()


def remove_member(ctx: AuthContext, project_id, user_id) -> dict:
    project = _get_project(ctx, project_id)
    _require_manager(ctx, project)

    user_id = parse_int(user_id)
    if user_id == project.pm_id:
        raise ValidationError("ERR-PJ-004", "The project manager cannot be removed from the project")

    member = db.session.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project.id,
            ProjectMember.user_id == user_id,
        )
    ).scalar_one_or_none()
    if member is None:
        raise ValidationError("ERR-VAL-005", "The user is not a project member", details={"user_id": user_id})

    db.session.delete(member)
    write_audit(
        ctx.user_id,
        tenant_id=project.tenant_id,
        action=AuditAction.PROJECT_REMOVE_MEMBER,
        resource_type="project",
        resource_id=project.id,
        before={"user_id": user_id},
    )
    db_commit_or_raise()
    return {"project_id": project.id, "user_id": user_id}


# ── Queries ──────────────────────────────────────────────────────────────────


def get_project(ctx: AuthContext, project_id) -> dict:
    return _get_project(ctx, project_id).to_dict(include_members=True)


def list_projects(ctx: AuthContext, status=None, mine=False) -> list[dict]:
    """Projects of the tenant; ``mine`` restricts to projects the caller belongs to."""
    tenant_id = require_tenant(ctx)
    q = select(Project).where(Project.tenant_id == tenant_id)
    if status:
        q = q.where(Project.status == status)
    if mine:
        q = q.join(ProjectMember, ProjectMember.project_id == Project.id).where(
            ProjectMember.user_id == ctx.user_id
        )
    q = q.order_by(Project.created_at.desc(), Project.id.desc())
    return [p.to_dict() for p in db.session.execute(q).scalars()]


def get_tenant_users(ctx: AuthContext) -> list[dict]:
    """Users holding any role in the caller's tenant (member pickers)."""
    tenant_id = require_tenant(ctx)
    users = db.session.execute(
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .where(UserRole.tenant_id == tenant_id)
        .distinct()
        .order_by(User.display_name, User.id)
    ).scalars().all()
    return [u.to_dict(tenant_id=tenant_id) for u in users]
