"""
Workflow Service — approval requests (expense / leave / purchase / other).

Lifecycle (see state_machine.WORKFLOW_TRANSITIONS):
    draft ──submit──▶ submitted ──approve──▶ approved
                        │   └────reject───▶ rejected ──submit──▶ submitted
                        └──withdraw──▶ withdrawn ◀──withdraw── rejected

Who may do what:
    - create / update / submit / withdraw: the creator
    - approve / reject: the designated approver, or a tenant_admin

Every operation follows: tenant → permission → validation → state check →
referential checks → persist → audit (same transaction) → notify (after commit).

Usage:
    from backoffice.services import workflow_service

    wf = workflow_service.create_workflow(ctx, {"title": "...", "approver_id": 7,
                                                "status": "submitted"})
    workflow_service.approve_workflow(approver_ctx, wf["id"])
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select

from backoffice.core.auth_context import APPROVER_ROLES, AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, StateTransitionError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.auth import User, UserRole
from backoffice.models.workflow import WORKFLOW_TITLE_MAX, WORKFLOW_TYPES, Workflow
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.services.helpers.sequences import next_workflow_number
from backoffice.services.notification import NotificationService
from backoffice.services.permission import has_role, require_tenant, user_has_any_role
from backoffice.services.state_machine import apply_transition, require_transition
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ("draft", "rejected")
_TRANSITION_ACTIONS = {"submit": "submitted", "withdraw": "withdrawn"}


# ── Validation ───────────────────────────────────────────────────────────────


def validate_title(title) -> str:
    title = clean_str(title)
    if not title:
        raise ValidationError("ERR-VAL-001", "Title is required", details={"title": "required"})
    if len(title) > WORKFLOW_TITLE_MAX:
        raise ValidationError(
            "ERR-VAL-002", f"Title must be {WORKFLOW_TITLE_MAX} characters or fewer",
            details={"title": "too_long"},
        )
    return title


def _validate_fields(data: dict, *, submitting: bool, tenant_id: int):
    """Field validation shared by create and update. First failing rule wins."""
    title = validate_title(data.get("title"))

    raw_approver = data.get("approver_id")
    approver_id = parse_int(raw_approver)
    if approver_id is None and raw_approver not in (None, ""):
        raise ValidationError(
            "ERR-VAL-005", "The selected approver was not found", details={"approver_id": raw_approver},
        )
    if submitting and approver_id is None:
        raise ValidationError("ERR-VAL-003", "An approver is required", details={"approver_id": "required"})

    date_from = parse_date_input(data.get("date_from"), "ERR-VAL-004", "date_from")
    date_to = parse_date_input(data.get("date_to"), "ERR-VAL-004", "date_to")
    if date_from and date_to and date_to < date_from:
        raise ValidationError(
            "ERR-VAL-004", "End date must be on or after the start date",
            details={"date_to": "before_date_from"},
        )

    if approver_id is not None and not user_has_any_role(approver_id, tenant_id, APPROVER_ROLES):
        raise ValidationError(
            "ERR-VAL-005", "The selected approver was not found",
            details={"approver_id": approver_id},
        )

    wf_type = clean_str(data.get("type")) or "other"
    if wf_type not in WORKFLOW_TYPES:
        raise ValidationError(
            "ERR-VAL-006", f"type must be one of {', '.join(WORKFLOW_TYPES)}",
            details={"type": wf_type},
        )

    amount = data.get("amount")
    if amount not in (None, ""):
        amount = parse_int(amount)
        if amount is None or amount < 0:
            raise ValidationError("ERR-VAL-007", "Amount must be a non-negative integer")
    else:
        amount = None

    return {
        "title": title,
        "approver_id": approver_id,
        "date_from": date_from,
        "date_to": date_to,
        "type": wf_type,
        "amount": amount,
        "description": data.get("description") or None,
    }


# ── Notifications ────────────────────────────────────────────────────────────


def notify_submitted(wf: Workflow):
    NotificationService.dispatch(
        tenant_id=wf.tenant_id,
        user_id=wf.approver_id,
        type="workflow_submitted",
        title=f"New request awaiting approval: {wf.title}",
        body=f"\"{wf.title}\" ({wf.workflow_number}) was submitted for your approval",
        resource_type="workflow",
        resource_id=wf.id,
    )


def _notify_approved(wf: Workflow):
    NotificationService.dispatch(
        tenant_id=wf.tenant_id,
        user_id=wf.created_by,
        type="workflow_approved",
        title=f"Request approved: {wf.title}",
        body=f"\"{wf.title}\" ({wf.workflow_number}) was approved",
        resource_type="workflow",
        resource_id=wf.id,
    )


def _notify_rejected(wf: Workflow, reason: str):
    NotificationService.dispatch(
        tenant_id=wf.tenant_id,
        user_id=wf.created_by,
        type="workflow_rejected",
        title=f"Request rejected: {wf.title}",
        body=f"\"{wf.title}\" ({wf.workflow_number}) was rejected. Reason: {reason}",
        resource_type="workflow",
        resource_id=wf.id,
    )


# ── Create ───────────────────────────────────────────────────────────────────


def build_workflow(ctx: AuthContext, tenant_id: int, fields: dict, status: str) -> Workflow:
    """Insert (flush only) a workflow with a freshly reserved number.

    Shared with expense_service so that the expense and its workflow land in
    one transaction.
    """
    wf = Workflow(
        tenant_id=tenant_id,
        workflow_number=next_workflow_number(tenant_id),
        type=fields["type"],
        title=fields["title"],
        description=fields.get("description"),
        amount=fields.get("amount"),
        date_from=fields.get("date_from"),
        date_to=fields.get("date_to"),
        approver_id=fields.get("approver_id"),
        status=status,
        created_by=ctx.user_id,
    )
    db.session.add(wf)
    db.session.flush()
    return wf


def create_workflow(ctx: AuthContext, data: dict) -> dict:
    """
    Create a workflow as draft, or directly as submitted.

    Raises:
        NoTenantError, ValidationError (ERR-VAL-001..007)
    """
    tenant_id = require_tenant(ctx)
    status = clean_str(data.get("status")) or "draft"
    if status not in ("draft", "submitted"):
        raise ValidationError("ERR-VAL-008", "status must be draft or submitted")

    fields = _validate_fields(data, submitting=(status == "submitted"), tenant_id=tenant_id)

    wf = build_workflow(ctx, tenant_id, fields, status)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.WORKFLOW_SUBMIT if status == "submitted" else AuditAction.WORKFLOW_CREATE,
        resource_type="workflow",
        resource_id=wf.id,
        after=wf.to_dict(),
    )
    db_commit_or_raise()

    logger.info(
        "Workflow %s created [%s]", wf.workflow_number, status,
        extra={"tenant_id": tenant_id, "event_type": "workflow.create"},
    )
    if status == "submitted":
        notify_submitted(wf)
    return wf.to_dict()


# ── Update (draft / rejected only) ───────────────────────────────────────────


def update_workflow(ctx: AuthContext, workflow_id, data: dict) -> dict:
    """
    Edit a draft or rejected workflow. Only the creator may edit.

    Omitted keys keep their current values.
    """
    tenant_id = require_tenant(ctx)
    wf = get_scoped(Workflow, workflow_id, tenant_id=tenant_id, code="ERR-WF-003", resource="Workflow")
    if wf.created_by != ctx.user_id:
        raise AuthorizationError("ERR-AUTH-003", "Only the creator can edit this workflow")
    if wf.status not in EDITABLE_STATUSES:
        raise StateTransitionError(
            "ERR-WF-001", "workflow", wf.status, "draft",
            f"A workflow in status '{wf.status}' cannot be edited",
        )

    before = wf.to_dict()
    merged = {
        "title": data.get("title", wf.title),
        "description": data.get("description", wf.description),
        "amount": data.get("amount", wf.amount),
        "date_from": data.get("date_from", wf.date_from),
        "date_to": data.get("date_to", wf.date_to),
        "approver_id": data.get("approver_id", wf.approver_id),
        "type": data.get("type", wf.type),
    }
    fields = _validate_fields(merged, submitting=False, tenant_id=tenant_id)

    for key, value in fields.items():
        setattr(wf, key, value)
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.WORKFLOW_UPDATE,
        resource_type="workflow",
        resource_id=wf.id,
        before=before,
        after=wf.to_dict(),
    )
    db_commit_or_raise()
    return wf.to_dict()


# ── Creator transitions: submit / withdraw ───────────────────────────────────


def transition_workflow(ctx: AuthContext, workflow_id, action: str) -> dict:
    """
    Apply a creator-side transition (``submit`` or ``withdraw``).

    Submit re-validates title and approver at transition time since a draft
    may have been saved incomplete.
    """
    tenant_id = require_tenant(ctx)
    to_status = _TRANSITION_ACTIONS.get(action)
    if to_status is None:
        raise ValidationError("ERR-VAL-001", f"Unknown workflow action: {action}")

    wf = get_scoped(Workflow, workflow_id, tenant_id=tenant_id, code="ERR-WF-003", resource="Workflow")
    if wf.created_by != ctx.user_id:
        raise AuthorizationError("ERR-AUTH-003", "Only the creator can perform this action")

    require_transition("workflow", wf.status, to_status)

    if to_status == "submitted":
        validate_title(wf.title)
        if wf.approver_id is None:
            raise ValidationError("ERR-VAL-003", "An approver is required", details={"approver_id": "required"})

    # A reason only accompanies the rejected status.
    values = {"rejection_reason": None}

    before_status = wf.status
    apply_transition(wf, "workflow", to_status, **values)

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.WORKFLOW_SUBMIT if to_status == "submitted" else AuditAction.WORKFLOW_WITHDRAW,
        resource_type="workflow",
        resource_id=wf.id,
        before={"status": before_status},
        after={"status": to_status},
    )
    db_commit_or_raise()

    if to_status == "submitted":
        notify_submitted(wf)
    return wf.to_dict()


def submit_workflow(ctx: AuthContext, workflow_id) -> dict:
    return transition_workflow(ctx, workflow_id, "submit")


def withdraw_workflow(ctx: AuthContext, workflow_id) -> dict:
    return transition_workflow(ctx, workflow_id, "withdraw")


# ── Approver transitions: approve / reject ───────────────────────────────────


def _require_approver(ctx: AuthContext, wf: Workflow):
    if wf.approver_id != ctx.user_id and not has_role(ctx, wf.tenant_id, {Role.TENANT_ADMIN}):
        raise AuthorizationError("ERR-AUTH-002", "You are not the approver of this workflow")


def approve_workflow(ctx: AuthContext, workflow_id) -> dict:
    """
    Approve a submitted workflow (approver or tenant_admin).

    The status write is conditional on the freshly read status, so of two
    concurrent approvals exactly one succeeds.
    """
    tenant_id = require_tenant(ctx)
    wf = get_scoped(Workflow, workflow_id, tenant_id=tenant_id, code="ERR-WF-003", resource="Workflow")
    _require_approver(ctx, wf)

    before_status = wf.status
    apply_transition(
        wf, "workflow", "approved",
        approved_at=datetime.now(timezone.utc),
        rejection_reason=None,
    )
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.WORKFLOW_APPROVE,
        resource_type="workflow",
        resource_id=wf.id,
        before={"status": before_status},
        after={"status": "approved"},
    )
    db_commit_or_raise()

    logger.info(
        "Workflow %s approved by user %s", wf.workflow_number, ctx.user_id,
        extra={"tenant_id": tenant_id, "event_type": "workflow.approve"},
    )
    _notify_approved(wf)
    return wf.to_dict()


def reject_workflow(ctx: AuthContext, workflow_id, reason) -> dict:
    """Reject a submitted workflow; the reason is mandatory and persisted."""
    reason = clean_str(reason)
    if not reason:
        raise ValidationError("ERR-WF-002", "A rejection reason is required", details={"reason": "required"})

    tenant_id = require_tenant(ctx)
    wf = get_scoped(Workflow, workflow_id, tenant_id=tenant_id, code="ERR-WF-003", resource="Workflow")
    _require_approver(ctx, wf)

    before_status = wf.status
    apply_transition(wf, "workflow", "rejected", rejection_reason=reason, approved_at=None)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.WORKFLOW_REJECT,
        resource_type="workflow",
        resource_id=wf.id,
        before={"status": before_status},
        after={"status": "rejected"},
        metadata={"rejection_reason": reason},
    )
    db_commit_or_raise()

    _notify_rejected(wf, reason)
    return wf.to_dict()


# ── Queries ──────────────────────────────────────────────────────────────────


def get_workflow(ctx: AuthContext, workflow_id) -> dict:
    tenant_id = require_tenant(ctx)
    wf = get_scoped(Workflow, workflow_id, tenant_id=tenant_id, code="ERR-WF-003", resource="Workflow")
    return wf.to_dict()


def list_workflows(ctx: AuthContext, filters: dict | None = None) -> list[dict]:
    """
    List workflows visible to the caller.

    Filters:
        mine    — only workflows the caller created. Without it,
                  tenant_admin sees every workflow and others see the
                  ones they created or must approve.
        status  — exact status
        type    — exact type
    """
    tenant_id = require_tenant(ctx)
    filters = filters or {}
    q = select(Workflow).where(Workflow.tenant_id == tenant_id)

    if filters.get("mine"):
        q = q.where(Workflow.created_by == ctx.user_id)
    elif not has_role(ctx, tenant_id, {Role.TENANT_ADMIN}):
        q = q.where(or_(Workflow.created_by == ctx.user_id, Workflow.approver_id == ctx.user_id))
    if filters.get("status"):
        q = q.where(Workflow.status == filters["status"])
    if filters.get("type"):
        q = q.where(Workflow.type == filters["type"])

    q = q.order_by(Workflow.created_at.desc(), Workflow.id.desc())
    return [wf.to_dict() for wf in db.session.execute(q).scalars()]


def get_pending_workflows(ctx: AuthContext) -> list[dict]:
    """Submitted workflows awaiting the caller (all of them for tenant_admin)."""
    tenant_id = require_tenant(ctx)
    q = select(Workflow).where(Workflow.tenant_id == tenant_id, Workflow.status == "submitted")
    if not has_role(ctx, tenant_id, {Role.TENANT_ADMIN}):
        q = q.where(Workflow.approver_id == ctx.user_id)
    q = q.order_by(Workflow.created_at.asc(), Workflow.id.asc())
    return [wf.to_dict() for wf in db.session.execute(q).scalars()]


def get_approvers(ctx: AuthContext, roles=APPROVER_ROLES) -> list[dict]:
    """Users of the caller's tenant eligible to approve workflows."""
    tenant_id = require_tenant(ctx)
    role_names = sorted(Role.parse(r).value for r in roles)
    users = db.session.execute(
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .where(UserRole.tenant_id == tenant_id, UserRole.role.in_(role_names))
        .distinct()
        .order_by(User.display_name, User.id)
    ).scalars().all()
    return [{"id": u.id, "display_name": u.display_name, "email": u.email} for u in users]
