"""
Expense Service — expense claims and their approval workflow.

Creating an expense also creates its Workflow (type ``expense``); the two
inserts, the workflow number reservation and the audit row share a single
transaction, so a failure at any step leaves neither row behind.
"""

import logging
from collections import defaultdict

from sqlalchemy import select

from backoffice.core.auth_context import EXPENSE_APPROVER_ROLES, AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.expense import EXPENSE_CATEGORIES, EXPENSE_MAX_AMOUNT, EXPENSE_MIN_AMOUNT, Expense
from backoffice.models.project import Project
from backoffice.models.workflow import Workflow
from backoffice.services import workflow_service
from backoffice.services.permission import has_role, require_role, require_tenant, user_has_any_role
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)

EXPENSE_ADMIN_ROLES = frozenset({Role.ACCOUNTING, Role.TENANT_ADMIN})
SUMMARY_ROLES = frozenset({Role.ACCOUNTING, Role.PM, Role.TENANT_ADMIN})


def expense_title(category: str, amount: int) -> str:
    return f"経費申請: {category} ¥{amount:,}"


def _validate(ctx: AuthContext, tenant_id: int, data: dict, submitting: bool) -> dict:
    category = clean_str(data.get("category"))
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError("ERR-VAL-001", "Select a valid expense category", details={"category": category})

    amount = parse_int(data.get("amount"))
    if amount is None or amount < EXPENSE_MIN_AMOUNT:
        raise ValidationError("ERR-VAL-002", f"Amount must be at least {EXPENSE_MIN_AMOUNT}")
    if amount > EXPENSE_MAX_AMOUNT:
        raise ValidationError("ERR-VAL-002", f"Amount must be at most {EXPENSE_MAX_AMOUNT:,}")

    expense_date = parse_date_input(data.get("expense_date"), "ERR-VAL-003", "expense_date")
    if expense_date is None:
        raise ValidationError("ERR-VAL-003", "expense_date is required", details={"expense_date": "required"})

    project_id = parse_int(data.get("project_id"))
    if project_id is None:
        raise ValidationError("ERR-VAL-004", "Select a project", details={"project_id": "required"})
    found = db.session.execute(
        select(Project.id).where(Project.id == project_id, Project.tenant_id == tenant_id)
    ).scalar()
    if found is None:
        raise ValidationError("ERR-VAL-004", "The selected project was not found", details={"project_id": project_id})

    approver_id = parse_int(data.get("approver_id"))
    if approver_id is None:
        if submitting:
            raise ValidationError("ERR-VAL-005", "Select an approver", details={"approver_id": "required"})
    elif not user_has_any_role(approver_id, tenant_id, EXPENSE_APPROVER_ROLES):
        raise ValidationError(
            "ERR-VAL-005", "The selected approver was not found", details={"approver_id": approver_id},
        )

    return {
        "category": category,
        "amount": amount,
        "expense_date": expense_date,
        "project_id": project_id,
        "approver_id": approver_id,
        "description": data.get("description") or None,
        "receipt_url": data.get("receipt_url") or None,
    }


# ── Create ───────────────────────────────────────────────────────────────────


def create_expense(ctx: AuthContext, data: dict) -> dict:
    """
    Create an expense with its linked workflow.

    Returns:
        {"expense": {...}, "workflow": {...}}
    """
    tenant_id = require_tenant(ctx)
    status = clean_str(data.get("status")) or "draft"
    if status not in ("draft", "submitted"):
        raise ValidationError("ERR-VAL-008", "status must be draft or submitted")
    fields = _validate(ctx, tenant_id, data, submitting=(status == "submitted"))

    wf = workflow_service.build_workflow(
        ctx,
        tenant_id,
        {
            "type": "expense",
            "title": expense_title(fields["category"], fields["amount"]),
            "description": fields["description"],
            "amount": fields["amount"],
            "date_from": fields["expense_date"],
            "date_to": fields["expense_date"],
            "approver_id": fields["approver_id"],
        },
        status,
    )

    expense = Expense(
        tenant_id=tenant_id,
        workflow_id=wf.id,
        project_id=fields["project_id"],
        category=fields["category"],
        amount=fields["amount"],
        expense_date=fields["expense_date"],
        description=fields["description"],
        receipt_url=fields["receipt_url"],
        created_by=ctx.user_id,
    )
    db.session.add(expense)
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.EXPENSE_SUBMIT if status == "submitted" else AuditAction.EXPENSE_CREATE,
        resource_type="expense",
        resource_id=expense.id,
        after={"expense": expense.to_dict(), "workflow_id": wf.id},
    )
    db_commit_or_raise()

    logger.info(
        "Expense %s created with workflow %s", expense.id, wf.workflow_number,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "expense.create"},
    )
    if status == "submitted":
        workflow_service.notify_submitted(wf)
    return {"expense": expense.to_dict(), "workflow": wf.to_dict()}


# ── Queries ──────────────────────────────────────────────────────────────────


def list_expenses(ctx: AuthContext, category=None) -> list[dict]:
    """Accounting and tenant_admin see every expense; others their own."""
    tenant_id = require_tenant(ctx)
    q = select(Expense).where(Expense.tenant_id == tenant_id)
    if not has_role(ctx, tenant_id, EXPENSE_ADMIN_ROLES):
        q = q.where(Expense.created_by == ctx.user_id)
    if category:
        q = q.where(Expense.category == category)
    q = q.order_by(Expense.created_at.desc(), Expense.id.desc())
    return [e.to_dict(include_workflow=True) for e in db.session.execute(q).scalars()]


def get_expense(ctx: AuthContext, expense_id) -> dict:
    tenant_id = require_tenant(ctx)
    expense_id_int = parse_int(expense_id)
    expense = None
    if expense_id_int is not None:
        expense = db.session.execute(
            select(Expense).where(Expense.id == expense_id_int, Expense.tenant_id == tenant_id)
        ).scalar_one_or_none()
    if expense is None:
        raise NotFoundError("ERR-EXP-001", "Expense", expense_id, tenant_id=tenant_id)
    if expense.created_by != ctx.user_id and not has_role(ctx, tenant_id, EXPENSE_ADMIN_ROLES):
        raise AuthorizationError("ERR-AUTH-003", "You do not have access to this expense")
    return expense.to_dict(include_workflow=True)


# ── Summary ──────────────────────────────────────────────────────────────────


def get_expense_summary(
    ctx: AuthContext, date_from, date_to, *, category=None, project_id=None, approved_only=False,
) -> dict:
    """
    Aggregate expenses over a date range for accounting / pm / tenant_admin.

    Returns a dict with ``by_category`` (sorted by total, descending, with
    a one-decimal share of the grand total), ``by_project`` (same order),
    ``by_month`` (``YYYY-MM`` ascending) and ``stats``.
    """
    tenant_id = require_tenant(ctx)
    require_role(ctx, tenant_id, SUMMARY_ROLES, code="ERR-AUTH-003",
                 message="You do not have permission to view expense summaries")

    start = parse_date_input(date_from, "ERR-VAL-010", "date_from")
    end = parse_date_input(date_to, "ERR-VAL-010", "date_to")
    if start is None or end is None:
        raise ValidationError("ERR-VAL-010", "date_from and date_to are required")
    if start > end:
        raise ValidationError("ERR-VAL-010", "date_from must be on or before date_to")

    q = (
        select(Expense.category, Expense.amount, Expense.expense_date, Expense.project_id, Project.name)
        .join(Project, Project.id == Expense.project_id)
        .where(
            Expense.tenant_id == tenant_id,
            Expense.expense_date >= start,
            Expense.expense_date <= end,
        )
    )
    if category:
        q = q.where(Expense.category == category)
    if project_id is not None:
        q = q.where(Expense.project_id == project_id)
    if approved_only:
        q = q.join(Workflow, Workflow.id == Expense.workflow_id).where(Workflow.status == "approved")

    rows = db.session.execute(q).all()

    cat = defaultdict(lambda: {"count": 0, "total": 0})
    proj = {}
    month = defaultdict(lambda: {"count": 0, "total": 0})
    for r_category, amount, expense_date, r_project_id, project_name in rows:
        cat[r_category]["count"] += 1
        cat[r_category]["total"] += amount
        p = proj.setdefault(r_project_id, {"name": project_name, "count": 0, "total": 0})
        p["count"] += 1
        p["total"] += amount
        key = expense_date.strftime("%Y-%m")
        month[key]["count"] += 1
        month[key]["total"] += amount

    grand_total = sum(a for _, a, _, _, _ in rows)
    count = len(rows)

    by_category = sorted(
        (
            {
                "category": c,
                "count": v["count"],
                "total_amount": v["total"],
                "percentage": round(v["total"] / grand_total * 100, 1) if grand_total else 0,
            }
            for c, v in cat.items()
        ),
        key=lambda d: d["total_amount"],
        reverse=True,
    )
    by_project = sorted(
        (
            {"id": pid, "name": v["name"], "count": v["count"], "total_amount": v["total"]}
            for pid, v in proj.items()
        ),
        key=lambda d: d["total_amount"],
        reverse=True,
    )
    by_month = [
        {"month": m, "count": v["count"], "total_amount": v["total"]}
        for m, v in sorted(month.items())
    ]

    return {
        "by_category": by_category,
        "by_project": by_project,
        "by_month": by_month,
        "stats": {
            "total_amount": grand_total,
            "total_count": count,
            "avg_amount": grand_total // count if count else 0,
            "max_amount": max((a for _, a, _, _, _ in rows), default=0),
        },
    }


def get_expense_approvers(ctx: AuthContext) -> list[dict]:
    return workflow_service.get_approvers(ctx, roles=EXPENSE_APPROVER_ROLES)
