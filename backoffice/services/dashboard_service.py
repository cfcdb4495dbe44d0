"""
Dashboard KPI service — per-user headline numbers for the home screen.
"""

from datetime import date, timedelta

from sqlalchemy import case, func, select

from backoffice.core.auth_context import AuthContext
from backoffice.models import db
from backoffice.models.project import Project, Task
from backoffice.models.timesheet import Timesheet
from backoffice.models.workflow import Workflow
from backoffice.services.notification import NotificationService
from backoffice.services.permission import require_tenant


def week_bounds(today: date | None = None) -> tuple[date, date]:
    """Monday..Sunday of the week containing *today*."""
    today = today or date.today()
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def get_dashboard_kpis(ctx: AuthContext, today: date | None = None) -> dict:
    tenant_id = require_tenant(ctx)
    uid = ctx.user_id

    pending = db.session.execute(
        select(func.count(Workflow.id)).where(
            Workflow.tenant_id == tenant_id,
            Workflow.status == "submitted",
            Workflow.approver_id == uid,
        )
    ).scalar() or 0

    my_workflows = db.session.execute(
        select(func.count(Workflow.id)).where(
            Workflow.tenant_id == tenant_id,
            Workflow.created_by == uid,
            Workflow.status.in_(("draft", "submitted")),
        )
    ).scalar() or 0

    my_tasks = db.session.execute(
        select(func.count(Task.id)).where(
            Task.tenant_id == tenant_id,
            Task.assignee_id == uid,
            Task.status != "done",
        )
    ).scalar() or 0

    monday, sunday = week_bounds(today)
    weekly_hours = db.session.execute(
        select(func.coalesce(func.sum(Timesheet.hours), 0)).where(
            Timesheet.tenant_id == tenant_id,
            Timesheet.user_id == uid,
            Timesheet.work_date >= monday,
            Timesheet.work_date <= sunday,
        )
    ).scalar() or 0

    progress_rows = db.session.execute(
        select(
            Project.id,
            Project.name,
            func.count(Task.id),
            func.sum(case((Task.status == "done", 1), else_=0)),
        )
        .outerjoin(Task, Task.project_id == Project.id)
        .where(
            Project.tenant_id == tenant_id,
            Project.pm_id == uid,
            Project.status.in_(("planning", "active")),
        )
        .group_by(Project.id, Project.name)
        .order_by(Project.name)
    ).all()

    return {
        "pending_approvals": pending,
        "my_open_workflows": my_workflows,
        "my_open_tasks": my_tasks,
        "weekly_hours": round(float(weekly_hours), 2),
        "week": {"from": monday.isoformat(), "to": sunday.isoformat()},
        "project_progress": [
            {
                "project_id": pid,
                "name": name,
                "progress": round((done or 0) * 100 / total) if total else 0,
            }
            for pid, name, total, done in progress_rows
        ],
        "unread_notifications": NotificationService.unread_count(ctx),
    }
