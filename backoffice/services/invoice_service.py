"""
Invoice Service — invoices with line items and derived totals.

Monetary rules (amounts are whole yen):
    item.amount = round(quantity * unit_price)      (half up)
    subtotal    = Σ item.amount
    tax_amount  = floor(subtotal * tax_rate / 100)
    total       = subtotal + tax_amount

Mutations require accounting or tenant_admin (ERR-AUTH-004). A PM may read
invoices of projects they manage; invoices without a project are never
shown to a PM.
"""

import logging
import math

from flask import current_app
from sqlalchemy import select

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, StateTransitionError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.invoice import CLIENT_NAME_MAX, INVOICE_STATUSES, Invoice, InvoiceItem
from backoffice.models.project import Project
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.services.helpers.sequences import next_invoice_number
from backoffice.services.permission import has_role, require_role, require_tenant
from backoffice.services.state_machine import apply_transition
from backoffice.utils.helpers import clean_str, db_commit_or_raise, parse_date_input, parse_int

logger = logging.getLogger(__name__)

INVOICE_ROLES = frozenset({Role.ACCOUNTING, Role.TENANT_ADMIN})
DEFAULT_TAX_RATE = 10


# ── Totals ───────────────────────────────────────────────────────────────────


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_totals(items, tax_rate) -> dict:
    """
    Derive line amounts and invoice totals.

    >>> calculate_totals([{"quantity": 3, "unit_price": 333},
    ...                   {"quantity": 2, "unit_price": 667}], 10)["total_amount"]
    2566
    """
    amounts = [round_half_up(float(i["quantity"]) * float(i["unit_price"])) for i in items]
    subtotal = sum(amounts)
    tax_amount = int(math.floor(subtotal * float(tax_rate) / 100))
    return {
        "item_amounts": amounts,
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "total_amount": subtotal + tax_amount,
    }


# ── Validation ───────────────────────────────────────────────────────────────


def _require_invoice_role(ctx: AuthContext, tenant_id: int, action: str):
    require_role(
        ctx, tenant_id, INVOICE_ROLES,
        code="ERR-AUTH-004", message=f"You do not have permission to {action} invoices",
    )


def _validate(tenant_id: int, data: dict) -> dict:
    client_name = clean_str(data.get("client_name"))
    if not client_name:
        raise ValidationError("ERR-VAL-H01", "Client name is required", details={"client_name": "required"})
    if len(client_name) > CLIENT_NAME_MAX:
        raise ValidationError(
            "ERR-VAL-H01", f"Client name must be {CLIENT_NAME_MAX} characters or fewer",
            details={"client_name": "too_long"},
        )

    issued_date = parse_date_input(data.get("issued_date"), "ERR-VAL-H02", "issued_date")
    if issued_date is None:
        raise ValidationError("ERR-VAL-H02", "Issue date is required", details={"issued_date": "required"})
    due_date = parse_date_input(data.get("due_date"), "ERR-VAL-H03", "due_date")
    if due_date is None:
        raise ValidationError("ERR-VAL-H03", "Due date is required", details={"due_date": "required"})
    if due_date < issued_date:
        raise ValidationError(
            "ERR-VAL-H03", "Due date must be on or after the issue date", details={"due_date": "before_issued_date"},
        )

    items = data.get("items") or []
    if not items:
        raise ValidationError("ERR-VAL-H05", "At least one line item is required", details={"items": "required"})
    cleaned = []
    for index, item in enumerate(items):
        description = clean_str(item.get("description"))
        if not description:
            raise ValidationError("ERR-VAL-H06", "Item description is required", details={"items": index})
        try:
            quantity = float(item.get("quantity"))
        except (TypeError, ValueError):
            quantity = 0
        if quantity <= 0:
            raise ValidationError("ERR-VAL-H07", "Quantity must be greater than 0", details={"items": index})
        try:
            unit_price = float(item.get("unit_price"))
        except (TypeError, ValueError):
            unit_price = -1
        if unit_price < 0:
            raise ValidationError("ERR-VAL-H08", "Unit price must be 0 or greater", details={"items": index})
        cleaned.append({"description": description, "quantity": quantity, "unit_price": unit_price})

    project_id = parse_int(data.get("project_id"))
    if project_id is not None:
        found = db.session.execute(
            select(Project.id).where(Project.id == project_id, Project.tenant_id == tenant_id)
        ).scalar()
        if found is None:
            raise ValidationError(
                "ERR-VAL-H04", "The selected project was not found", details={"project_id": project_id},
            )

    tax_rate = data.get("tax_rate")
    if tax_rate in (None, ""):
        tax_rate = current_app.config.get("DEFAULT_TAX_RATE", DEFAULT_TAX_RATE)
    try:
        tax_rate = float(tax_rate)
    except (TypeError, ValueError):
        tax_rate = math.nan
    if not math.isfinite(tax_rate) or not 0 <= tax_rate <= 100:
        raise ValidationError(
            "ERR-VAL-H10", "Tax rate must be a number between 0 and 100",
            details={"tax_rate": data.get("tax_rate")},
        )

    return {
        "client_name": client_name,
        "issued_date": issued_date,
        "due_date": due_date,
        "project_id": project_id,
        "tax_rate": tax_rate,
        "notes": data.get("notes") or None,
        "items": cleaned,
    }


def _apply_items(invoice: Invoice, items, tax_rate):
    totals = calculate_totals(items, tax_rate)
    invoice.items = [
        InvoiceItem(
            tenant_id=invoice.tenant_id,
            description=item["description"],
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            amount=amount,
            sort_order=index,
        )
        for index, (item, amount) in enumerate(zip(items, totals["item_amounts"]))
    ]
    invoice.subtotal = totals["subtotal"]
    invoice.tax_amount = totals["tax_amount"]
    invoice.total_amount = totals["total_amount"]


def _get_invoice(ctx: AuthContext, invoice_id) -> Invoice:
    return get_scoped(Invoice, invoice_id, tenant_id=require_tenant(ctx), code="ERR-INV-001", resource="Invoice")


# ── Mutations ────────────────────────────────────────────────────────────────


def create_invoice(ctx: AuthContext, data: dict) -> dict:
    tenant_id = require_tenant(ctx)
    _require_invoice_role(ctx, tenant_id, "create")
    fields = _validate(tenant_id, data)
    items = fields.pop("items")

    invoice = Invoice(
        tenant_id=tenant_id,
        invoice_number=next_invoice_number(tenant_id),
        status="draft",
        created_by=ctx.user_id,
        **fields,
    )
    _apply_items(invoice, items, fields["tax_rate"])
    db.session.add(invoice)
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.INVOICE_CREATE,
        resource_type="invoice",
        resource_id=invoice.id,
        after=invoice.to_dict(include_items=True),
    )
    db_commit_or_raise()

    logger.info(
        "Invoice %s created: total=%s", invoice.invoice_number, invoice.total_amount,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "invoice.create"},
    )
    return invoice.to_dict(include_items=True)


def update_invoice(ctx: AuthContext, invoice_id, data: dict) -> dict:
    """Replace header fields and all line items of a draft invoice."""
    tenant_id = require_tenant(ctx)
    _require_invoice_role(ctx, tenant_id, "edit")
    invoice = _get_invoice(ctx, invoice_id)
    if invoice.status != "draft":
        raise StateTransitionError(
            "ERR-INV-002", "invoice", invoice.status, "draft", "Only draft invoices can be edited",
        )

    fields = _validate(tenant_id, data)
    items = fields.pop("items")
    before = {"invoice": invoice.to_dict(), "items": [i.to_dict() for i in invoice.items]}

    for key, value in fields.items():
        setattr(invoice, key, value)
    _apply_items(invoice, items, fields["tax_rate"])
    db.session.flush()

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.INVOICE_UPDATE,
        resource_type="invoice",
        resource_id=invoice.id,
        before=before,
        after={"invoice": invoice.to_dict(), "items": [i.to_dict() for i in invoice.items]},
    )
    db_commit_or_raise()
    return invoice.to_dict(include_items=True)


def update_invoice_status(ctx: AuthContext, invoice_id, status) -> dict:
    tenant_id = require_tenant(ctx)
    _require_invoice_role(ctx, tenant_id, "update")
    invoice = _get_invoice(ctx, invoice_id)

    status = clean_str(status)
    if status not in INVOICE_STATUSES:
        raise ValidationError("ERR-VAL-H09", f"status must be one of {', '.join(INVOICE_STATUSES)}")

    before_status = invoice.status
    apply_transition(invoice, "invoice", status)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.INVOICE_STATUS_CHANGE,
        resource_type="invoice",
        resource_id=invoice.id,
        before={"status": before_status},
        after={"status": status},
    )
    db_commit_or_raise()
    return invoice.to_dict()


def delete_invoice(ctx: AuthContext, invoice_id) -> dict:
    tenant_id = require_tenant(ctx)
    _require_invoice_role(ctx, tenant_id, "delete")
    invoice = _get_invoice(ctx, invoice_id)
    if invoice.status != "draft":
        raise StateTransitionError(
            "ERR-INV-004", "invoice", invoice.status, "deleted", "Only draft invoices can be deleted",
        )

    before = {"invoice": invoice.to_dict(), "items": [i.to_dict() for i in invoice.items]}
    db.session.delete(invoice)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.INVOICE_DELETE,
        resource_type="invoice",
        resource_id=before["invoice"]["id"],
        before=before,
    )
    db_commit_or_raise()
    return {"id": before["invoice"]["id"], "deleted": True}


# ── Queries ──────────────────────────────────────────────────────────────────


def _managed_project_ids(ctx: AuthContext, tenant_id: int) -> list[int]:
    return db.session.execute(
        select(Project.id).where(Project.tenant_id == tenant_id, Project.pm_id == ctx.user_id)
    ).scalars().all()


def get_invoice(ctx: AuthContext, invoice_id) -> dict:
    tenant_id = require_tenant(ctx)
    invoice = _get_invoice(ctx, invoice_id)
    if not has_role(ctx, tenant_id, INVOICE_ROLES):
        if not has_role(ctx, tenant_id, {Role.PM}):
            raise AuthorizationError("ERR-AUTH-004", "You do not have permission to view invoices")
        if invoice.project_id is None or invoice.project_id not in _managed_project_ids(ctx, tenant_id):
            raise AuthorizationError("ERR-AUTH-004", "You do not have permission to view this invoice")
    return invoice.to_dict(include_items=True)


def list_invoices(ctx: AuthContext, filters: dict | None = None) -> list[dict]:
    """Filters: status, project_id, date_from / date_to (on issued_date)."""
    tenant_id = require_tenant(ctx)
    filters = filters or {}
    q = select(Invoice).where(Invoice.tenant_id == tenant_id)

    if not has_role(ctx, tenant_id, INVOICE_ROLES):
        if not has_role(ctx, tenant_id, {Role.PM}):
            raise AuthorizationError("ERR-AUTH-004", "You do not have permission to view invoices")
        managed = _managed_project_ids(ctx, tenant_id)
        if not managed:
            return []
        q = q.where(Invoice.project_id.in_(managed))

    if filters.get("status"):
        q = q.where(Invoice.status == filters["status"])
    project_id = parse_int(filters.get("project_id"))
    if project_id is not None:
        q = q.where(Invoice.project_id == project_id)
    date_from = parse_date_input(filters.get("date_from"), "ERR-VAL-010", "date_from")
    date_to = parse_date_input(filters.get("date_to"), "ERR-VAL-010", "date_to")
    if date_from:
        q = q.where(Invoice.issued_date >= date_from)
    if date_to:
        q = q.where(Invoice.issued_date <= date_to)

    q = q.order_by(Invoice.issued_date.desc(), Invoice.id.desc())
    return [inv.to_dict() for inv in db.session.execute(q).scalars()]
