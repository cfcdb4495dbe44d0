"""
Task Service — kanban tasks inside a project.

Permissions:
    create / delete        → project PM or tenant_admin
    update / status change → project PM, the assignee, or tenant_admin

A task with logged timesheet hours cannot be deleted (ERR-TASK-003); the
timesheets reference it with ON DELETE RESTRICT and the check here runs
first so the caller gets a typed error instead of an integrity failure.
"""

import logging

from sqlalchemy import func, select

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.project import TASK_STATUSES, TASK_TITLE_MAX, Project, Task
from backoffice.models.timesheet import Timesheet
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.services.permission import has_role, is_project_member, require_tenant
from backoffice.services.project_service import can_manage_project
from backoffice.services.state_machine import apply_transition
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)


def _get_task(ctx: AuthContext, task_id) -> Task:
    return get_scoped(Task, task_id, tenant_id=require_tenant(ctx), code="ERR-TASK-001", resource="Task")


def _get_project(ctx: AuthContext, project_id) -> Project:
    return get_scoped(Project, project_id, tenant_id=require_tenant(ctx), code="ERR-PJ-001", resource="Project")


def _require_task_editor(ctx: AuthContext, task: Task, project: Project):
    if task.assignee_id == ctx.user_id or can_manage_project(ctx, project):
        return
    raise AuthorizationError("ERR-AUTH-003", "Only the PM or the assignee can modify this task")


def _validate_title(title) -> str:
    title = clean_str(title)
    if not title:
        raise ValidationError("ERR-VAL-001", "Task title is required", details={"title": "required"})
    if len(title) > TASK_TITLE_MAX:
        raise ValidationError(
            "ERR-VAL-002", f"Task title must be {TASK_TITLE_MAX} characters or fewer",
            details={"title": "too_long"},
        )
    return title


def _validate_assignee(project: Project, assignee_id):
    assignee_id = parse_int(assignee_id)
    if assignee_id is not None and not is_project_member(project.id, assignee_id):
        raise ValidationError(
            "ERR-VAL-005", "The assignee must be a project member", details={"assignee_id": assignee_id},
        )
    return assignee_id


# ── Create ───────────────────────────────────────────────────────────────────


def create_task(ctx: AuthContext, project_id, data: dict) -> dict:
    project = _get_project(ctx, project_id)
    if not can_manage_project(ctx, project):
        raise AuthorizationError("ERR-AUTH-003", "Only the project manager can create tasks")

    title = _validate_title(data.get("title"))
    due_date = parse_date_input(data.get("due_date"), "ERR-VAL-003", "due_date")
    assignee_id = _validate_assignee(project, data.get("assignee_id"))

    task = Task(
        tenant_id=project.tenant_id,
        project_id=project.id,
        title=title,
        description=data.get("description") or None,
        status="todo",
        assignee_id=assignee_id,
        due_date=due_date,
        created_by=ctx.user_id,
    )
    db.session.add(task)
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=project.tenant_id,
        action=AuditAction.TASK_CREATE,
        resource_type="task",
        resource_id=task.id,
        after=task.to_dict(),
    )
    db_commit_or_raise()
    return task.to_dict()


# ── Update ───────────────────────────────────────────────────────────────────


def update_task(ctx: AuthContext, task_id, data: dict) -> dict:
    """Edit title / description / assignee / due date. Status has its own call."""
    task = _get_task(ctx, task_id)
    project = _get_project(ctx, task.project_id)
    _require_task_editor(ctx, task, project)
    before = task.to_dict()

    if "title" in data:
        task.title = _validate_title(data.get("title"))
    if "description" in data:
        task.description = data.get("description") or None
    if "due_date" in data:
        task.due_date = parse_date_input(data.get("due_date"), "ERR-VAL-003", "due_date")
    if "assignee_id" in data:
        task.assignee_id = _validate_assignee(project, data.get("assignee_id"))
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=task.tenant_id,
        action=AuditAction.TASK_UPDATE,
        resource_type="task",
        resource_id=task.id,
        before=before,
        after=task.to_dict(),
    )
    db_commit_or_raise()
    return task.to_dict()


def update_task_status(ctx: AuthContext, task_id, status) -> dict:
    task = _get_task(ctx, task_id)
    project = _get_project(ctx, task.project_id)
    _require_task_editor(ctx, task, project)

    status = clean_str(status)
    if status not in TASK_STATUSES:
        raise ValidationError("ERR-VAL-004", f"status must be one of {', '.join(TASK_STATUSES)}")

    before_status = task.status
    apply_transition(task, "task", status)
    write_audit(
        ctx.user_id,
        tenant_id=task.tenant_id,
        action=AuditAction.TASK_STATUS_CHANGE,
        resource_type="task",
        resource_id=task.id,
        before={"status": before_status},
        after={"status": status},
    )
    db_commit_or_raise()
    return task.to_dict()


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_task(ctx: AuthContext, task_id) -> dict:
    task = _get_task(ctx, task_id)
    project = _get_project(ctx, task.project_id)
    if not can_manage_project(ctx, project):
        raise AuthorizationError("ERR-AUTH-003", "Only the project manager can delete tasks")

    logged = db.session.execute(
        select(func.count(Timesheet.id)).where(Timesheet.task_id == task.id)
    ).scalar() or 0
    if logged:
        raise ValidationError(
            "ERR-TASK-003", "This task has logged hours and cannot be deleted",
            details={"timesheets": logged},
        )

    before = task.to_dict()
    db.session.delete(task)
    write_audit(
        ctx.user_id,
        tenant_id=before["tenant_id"],
        action=AuditAction.TASK_DELETE,
        resource_type="task",
        resource_id=before["id"],
        before=before,
    )
    db_commit_or_raise()
    return {"id": before["id"], "deleted": True}


# ── Queries ──────────────────────────────────────────────────────────────────


def list_tasks(ctx: AuthContext, project_id, status=None, assignee_id=None) -> list[dict]:
    """Tasks of one project; visible to members and to PM/tenant_admin."""
    project = _get_project(ctx, project_id)
    if not (is_project_member(project.id, ctx.user_id) or has_role(ctx, project.tenant_id, {Role.TENANT_ADMIN})):
        raise AuthorizationError("ERR-AUTH-003", "You are not a member of this project")

    q = select(Task).where(Task.tenant_id == project.tenant_id, Task.project_id == project.id)
    if status:
        q = q.where(Task.status == status)
    if assignee_id is not None:
        q = q.where(Task.assignee_id == assignee_id)
    q = q.order_by(Task.created_at.asc(), Task.id.asc())
    return [t.to_dict() for t in db.session.execute(q).scalars()]
