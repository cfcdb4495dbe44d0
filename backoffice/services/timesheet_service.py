"""
Timesheet Service — per-user hour logging and reporting.

Rules enforced on every write path (create / update / bulk upsert):
    ERR-VAL-001  hours outside [0.25, 24]
    ERR-VAL-002  hours not a multiple of 0.25
    ERR-VAL-003  caller is not a member of the project
    ERR-VAL-004  task does not belong to the project
    ERR-VAL-005  the caller's total for the day would exceed 24h
    ERR-VAL-006  an entry for (date, project, task) already exists
    ERR-VAL-007  work_date missing or not a date
    ERR-TS-001   entry not found, or owned by someone else

The daily total counts every stored row of the user for that date, in any
tenant, except the rows the operation is replacing or deleting.
"""

import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import NotFoundError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.auth import User
from backoffice.models.project import Project, Task
from backoffice.models.timesheet import DAILY_HOURS_CAP, HOURS_STEP, MAX_HOURS, MIN_HOURS, Timesheet
from backoffice.services.permission import has_role, is_project_member, require_tenant
from backoffice.utils.helpers import db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)


# ── Validation helpers ───────────────────────────────────────────────────────


def validate_hours(hours) -> float:
    try:
        hours = float(hours)
    except (TypeError, ValueError):
        raise ValidationError("ERR-VAL-001", "Hours must be a number between 0.25 and 24") from None
    if hours < MIN_HOURS or hours > MAX_HOURS:
        raise ValidationError(
            "ERR-VAL-001", f"Hours must be between {MIN_HOURS} and {MAX_HOURS}", details={"hours": hours},
        )
    if not (hours / HOURS_STEP).is_integer():
        raise ValidationError(
            "ERR-VAL-002", "Hours must be entered in 15 minute (0.25h) steps", details={"hours": hours},
        )
    return hours


def _require_work_date(value):
    work_date = parse_date_input(value, "ERR-VAL-007", "work_date")
    if work_date is None:
        raise ValidationError("ERR-VAL-007", "work_date is required", details={"work_date": "required"})
    return work_date


def _validate_project_and_task(ctx: AuthContext, tenant_id: int, project_id, task_id):
    project_id = parse_int(project_id)
    project = None
    if project_id is not None:
        project = db.session.execute(
            select(Project.id).where(Project.id == project_id, Project.tenant_id == tenant_id)
        ).scalar()
    if project is None or not is_project_member(project_id, ctx.user_id):
        raise ValidationError(
            "ERR-VAL-003", "You are not a member of this project", details={"project_id": project_id},
        )

    task_id = parse_int(task_id)
    if task_id is not None:
        found = db.session.execute(
            select(Task.id).where(
                Task.id == task_id, Task.project_id == project_id, Task.tenant_id == tenant_id,
            )
        ).scalar()
        if found is None:
            raise ValidationError(
                "ERR-VAL-004", "The task does not belong to this project", details={"task_id": task_id},
            )
    return project_id, task_id


def _day_total(user_id: int, work_date, exclude_ids=()) -> float:
    """Hours the user has logged on *work_date* across every tenant."""
    q = select(func.coalesce(func.sum(Timesheet.hours), 0)).where(
        Timesheet.user_id == user_id,
        Timesheet.work_date == work_date,
    )
    if exclude_ids:
        q = q.where(Timesheet.id.notin_(list(exclude_ids)))
    return float(db.session.execute(q).scalar() or 0)


def _check_daily_cap(total: float, work_date):
    if total > DAILY_HOURS_CAP:
        raise ValidationError(
            "ERR-VAL-005", f"Total hours for {work_date.isoformat()} exceed {DAILY_HOURS_CAP}h",
            details={"work_date": work_date.isoformat(), "total": total},
        )


def _find_existing(user_id, work_date, project_id, task_id, exclude_ids=()):
    """Look up the row holding a (user, date, project, task) slot.

    Task NULL is compared explicitly since the unique index does not cover it.
    """
    q = select(Timesheet).where(
        Timesheet.user_id == user_id,
        Timesheet.work_date == work_date,
        Timesheet.project_id == project_id,
        Timesheet.task_id.is_(None) if task_id is None else Timesheet.task_id == task_id,
    )
    if exclude_ids:
        q = q.where(Timesheet.id.notin_(list(exclude_ids)))
    return db.session.execute(q).scalars().first()


def _duplicate_error(work_date, project_id, task_id):
    return ValidationError(
        "ERR-VAL-006", "Hours for this date, project and task are already registered",
        details={"work_date": work_date.isoformat(), "project_id": project_id, "task_id": task_id},
    )


def _get_own(ctx: AuthContext, tenant_id: int, timesheet_id) -> Timesheet:
    ts_id = parse_int(timesheet_id)
    ts = None
    if ts_id is not None:
        ts = db.session.execute(
            select(Timesheet)
            .where(Timesheet.id == ts_id, Timesheet.tenant_id == tenant_id, Timesheet.user_id == ctx.user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    if ts is None:
        raise NotFoundError("ERR-TS-001", "Timesheet entry", timesheet_id, tenant_id=tenant_id)
    return ts


def _commit_timesheets(work_date, project_id, task_id):
    """Commit, mapping a unique-key race onto the duplicate error."""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate_error(work_date, project_id, task_id) from None


# ── Single-row operations ────────────────────────────────────────────────────


def create_timesheet(ctx: AuthContext, data: dict) -> dict:
    tenant_id = require_tenant(ctx)
    hours = validate_hours(data.get("hours"))
    work_date = _require_work_date(data.get("work_date"))
    project_id, task_id = _validate_project_and_task(ctx, tenant_id, data.get("project_id"), data.get("task_id"))

    _check_daily_cap(_day_total(ctx.user_id, work_date) + hours, work_date)
    if _find_existing(ctx.user_id, work_date, project_id, task_id) is not None:
        raise _duplicate_error(work_date, project_id, task_id)

    ts = Timesheet(
        tenant_id=tenant_id,
        user_id=ctx.user_id,
        project_id=project_id,
        task_id=task_id,
        work_date=work_date,
        hours=hours,
        note=data.get("note") or None,
    )
    db.session.add(ts)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate_error(work_date, project_id, task_id) from None

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TIMESHEET_CREATE,
        resource_type="timesheet",
        resource_id=ts.id,
        after=ts.to_dict(),
    )
    _commit_timesheets(work_date, project_id, task_id)
    return ts.to_dict()


def update_timesheet(ctx: AuthContext, timesheet_id, data: dict) -> dict:
    """Change hours (and note) of one of the caller's own entries."""
    tenant_id = require_tenant(ctx)
    hours = validate_hours(data.get("hours"))
    ts = _get_own(ctx, tenant_id, timesheet_id)

    _check_daily_cap(_day_total(ctx.user_id, ts.work_date, exclude_ids=[ts.id]) + hours, ts.work_date)

    before = ts.to_dict()
    ts.hours = hours
    if "note" in data:
        ts.note = data.get("note") or None
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TIMESHEET_UPDATE,
        resource_type="timesheet",
        resource_id=ts.id,
        before=before,
        after=ts.to_dict(),
    )
    db_commit_or_raise()
    return ts.to_dict()


def delete_timesheet(ctx: AuthContext, timesheet_id) -> dict:
    tenant_id = require_tenant(ctx)
    ts = _get_own(ctx, tenant_id, timesheet_id)
    before = ts.to_dict()

    db.session.delete(ts)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.TIMESHEET_DELETE,
        resource_type="timesheet",
        resource_id=before["id"],
        before=before,
    )
    db_commit_or_raise()
    return {"id": before["id"], "deleted": True}


# ── Bulk upsert (weekly grid save) ───────────────────────────────────────────


def bulk_upsert_timesheets(ctx: AuthContext, entries, deleted_ids=None) -> dict:
    """
    Save a batch of entries in one transaction.

    Each entry is ``{id?, project_id, task_id?, work_date, hours, note?}``.
    Entries with ``id`` update that row; entries without ``id`` insert, or
    update the stored row for the same (date, project, task) slot. Entries
    with ``hours <= 0`` are ignored. Rows in ``deleted_ids`` are removed.

    Everything is validated before the first write; any failure leaves the
    stored timesheets untouched.

    Returns:
        {"created": n, "updated": n, "deleted": n}
    """
    tenant_id = require_tenant(ctx)
    entries = entries or []

    # ── Phase 1: validate ──
    to_delete = [_get_own(ctx, tenant_id, ts_id) for ts_id in (deleted_ids or [])]
    replaced_ids = {ts.id for ts in to_delete}

    planned = []  # (existing row or None, fields)
    seen_slots = set()
    for entry in entries:
        try:
            raw_hours = float(entry.get("hours") or 0)
        except (TypeError, ValueError):
            raw_hours = None
        if raw_hours is not None and raw_hours <= 0:
            continue
        hours = validate_hours(entry.get("hours"))

        existing = None
        if entry.get("id") not in (None, ""):
            existing = _get_own(ctx, tenant_id, entry.get("id"))
            if existing.id in replaced_ids:
                raise ValidationError(
                    "ERR-VAL-006", "An entry cannot be updated and deleted in the same batch",
                    details={"id": existing.id},
                )
            work_date, project_id, task_id = existing.work_date, existing.project_id, existing.task_id
        else:
            work_date = _require_work_date(entry.get("work_date"))
            project_id, task_id = _validate_project_and_task(
                ctx, tenant_id, entry.get("project_id"), entry.get("task_id"),
            )
            existing = _find_existing(ctx.user_id, work_date, project_id, task_id, exclude_ids=replaced_ids)

        slot = (work_date, project_id, task_id)
        if slot in seen_slots:
            raise _duplicate_error(work_date, project_id, task_id)
        seen_slots.add(slot)
        if existing is not None:
            replaced_ids.add(existing.id)

        planned.append((existing, {
            "work_date": work_date,
            "project_id": project_id,
            "task_id": task_id,
            "hours": hours,
            "note": entry.get("note") or None,
        }))

    new_hours = defaultdict(float)
    for _, fields in planned:
        new_hours[fields["work_date"]] += fields["hours"]
    for work_date, added in sorted(new_hours.items()):
        _check_daily_cap(_day_total(ctx.user_id, work_date, exclude_ids=replaced_ids) + added, work_date)

    # ── Phase 2: write ──
    counts = {"created": 0, "updated": 0, "deleted": 0}
    for ts in to_delete:
        before = ts.to_dict()
        db.session.delete(ts)
        write_audit(
            ctx.user_id, tenant_id=tenant_id, action=AuditAction.TIMESHEET_DELETE,
            resource_type="timesheet", resource_id=before["id"], before=before,
        )
        counts["deleted"] += 1
    db.session.flush()

    for existing, fields in planned:
        if existing is not None:
            before = existing.to_dict()
            existing.hours = fields["hours"]
            existing.note = fields["note"]
            db.session.flush()
            write_audit(
                ctx.user_id, tenant_id=tenant_id, action=AuditAction.TIMESHEET_UPDATE,
                resource_type="timesheet", resource_id=existing.id,
                before=before, after=existing.to_dict(),
            )
            counts["updated"] += 1
        else:
            ts = Timesheet(tenant_id=tenant_id, user_id=ctx.user_id, **fields)
            db.session.add(ts)
            db.session.flush()
            write_audit(
                ctx.user_id, tenant_id=tenant_id, action=AuditAction.TIMESHEET_CREATE,
                resource_type="timesheet", resource_id=ts.id, after=ts.to_dict(),
            )
            counts["created"] += 1

    db_commit_or_raise()
    logger.info(
        "Timesheet bulk save: %s", counts,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "timesheet.bulk"},
    )
    return counts


# ── Queries ──────────────────────────────────────────────────────────────────


def list_timesheets(ctx: AuthContext, date_from=None, date_to=None, project_id=None) -> list[dict]:
    """The caller's own entries, optionally within a date range."""
    tenant_id = require_tenant(ctx)
    q = select(Timesheet).where(Timesheet.tenant_id == tenant_id, Timesheet.user_id == ctx.user_id)
    start = parse_date_input(date_from, "ERR-VAL-010", "date_from")
    end = parse_date_input(date_to, "ERR-VAL-010", "date_to")
    if start:
        q = q.where(Timesheet.work_date >= start)
    if end:
        q = q.where(Timesheet.work_date <= end)
    if project_id is not None:
        q = q.where(Timesheet.project_id == project_id)
    q = q.order_by(Timesheet.work_date.asc(), Timesheet.id.asc())
    return [ts.to_dict() for ts in db.session.execute(q).scalars()]


def get_timesheet_report(ctx: AuthContext, date_from, date_to, project_id=None, member_id=None) -> dict:
    """
    Aggregate hours by project and by member for a date range.

    Visibility:
        tenant_admin / accounting → every entry in the tenant
        pm                        → entries of projects they manage
                                    (their own entries if they manage none)
        others                    → their own entries
    """
    tenant_id = require_tenant(ctx)
    start = parse_date_input(date_from, "ERR-VAL-010", "date_from")
    end = parse_date_input(date_to, "ERR-VAL-010", "date_to")
    if start is None or end is None:
        raise ValidationError("ERR-VAL-010", "date_from and date_to are required")
    if end < start:
        raise ValidationError("ERR-VAL-010", "date_to must be on or after date_from")

    q = (
        select(Timesheet, Project.name)
        .join(Project, Project.id == Timesheet.project_id)
        .where(
            Timesheet.tenant_id == tenant_id,
            Timesheet.work_date >= start,
            Timesheet.work_date <= end,
        )
    )
    if not has_role(ctx, tenant_id, {Role.TENANT_ADMIN, Role.ACCOUNTING}):
        managed = []
        if has_role(ctx, tenant_id, {Role.PM}):
            managed = db.session.execute(
                select(Project.id).where(Project.tenant_id == tenant_id, Project.pm_id == ctx.user_id)
            ).scalars().all()
        if managed:
            q = q.where(Timesheet.project_id.in_(managed))
        else:
            q = q.where(Timesheet.user_id == ctx.user_id)

    if project_id is not None:
        q = q.where(Timesheet.project_id == project_id)
    if member_id is not None:
        q = q.where(Timesheet.user_id == member_id)

    rows = db.session.execute(q).all()

    by_project = {}
    by_member = {}
    for ts, project_name in rows:
        p = by_project.setdefault(ts.project_id, {"name": project_name, "hours": 0.0, "members": set()})
        p["hours"] += ts.hours
        p["members"].add(ts.user_id)
        m = by_member.setdefault(ts.user_id, {"hours": 0.0, "projects": defaultdict(float)})
        m["hours"] += ts.hours
        m["projects"][ts.project_id] += ts.hours

    names = {}
    if by_member:
        names = dict(db.session.execute(
            select(User.id, User.display_name).where(User.id.in_(list(by_member)))
        ).all())

    return {
        "date_from": start.isoformat(),
        "date_to": end.isoformat(),
        "by_project": [
            {
                "project_id": pid,
                "project_name": p["name"],
                "total_hours": round(p["hours"], 2),
                "member_count": len(p["members"]),
            }
            for pid, p in sorted(by_project.items(), key=lambda kv: -kv[1]["hours"])
        ],
        "by_member": [
            {
                "user_id": uid,
                "display_name": names.get(uid) or f"user-{uid}",
                "total_hours": round(m["hours"], 2),
                "project_count": len(m["projects"]),
                "projects": {pid: round(h, 2) for pid, h in m["projects"].items()},
            }
            for uid, m in sorted(by_member.items(), key=lambda kv: -kv[1]["hours"])
        ],
        "total_hours": round(sum(ts.hours for ts, _ in rows), 2),
    }
