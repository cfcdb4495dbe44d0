"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for every mutating action.

The recognised action vocabulary is the closed ``AuditAction`` enum; every
service passes an enum member, and downstream filters/reports rely on the
string values staying exactly as listed.
"""

import enum
import json
from datetime import UTC, datetime

from backoffice.models import db


# ── Constants ────────────────────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    # Workflow
    WORKFLOW_CREATE = "workflow.create"
    WORKFLOW_SUBMIT = "workflow.submit"
    WORKFLOW_APPROVE = "workflow.approve"
    WORKFLOW_REJECT = "workflow.reject"
    WORKFLOW_WITHDRAW = "workflow.withdraw"
    WORKFLOW_UPDATE = "workflow.update"
    # Project
    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE = "project.update"
    PROJECT_STATUS_CHANGE = "project.status_change"
    PROJECT_ADD_MEMBER = "project.add_member"
    PROJECT_REMOVE_MEMBER = "project.remove_member"
    # Task
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_DELETE = "task.delete"
    TASK_STATUS_CHANGE = "task.status_change"
    # User administration
    USER_INVITE = "user.invite"
    USER_ROLE_CHANGE = "user.role_change"
    USER_ACTIVATE = "user.activate"
    USER_DEACTIVATE = "user.deactivate"
    USER_REACTIVATE = "user.reactivate"
    USER_PASSWORD_RESET = "user.password_reset"
    # Tenant
    TENANT_UPDATE = "tenant.update"
    TENANT_SETTINGS_CHANGE = "tenant.settings_change"
    TENANT_SOFT_DELETE = "tenant.soft_delete"
    # Timesheet
    TIMESHEET_CREATE = "timesheet.create"
    TIMESHEET_UPDATE = "timesheet.update"
    TIMESHEET_DELETE = "timesheet.delete"
    # Expense
    EXPENSE_CREATE = "expense.create"
    EXPENSE_SUBMIT = "expense.submit"
    # Invoice
    INVOICE_CREATE = "invoice.create"
    INVOICE_UPDATE = "invoice.update"
    INVOICE_DELETE = "invoice.delete"
    INVOICE_STATUS_CHANGE = "invoice.status_change"
    # Document
    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_DELETE = "document.delete"
    DOCUMENT_DOWNLOAD = "document.download"

    @property
    def resource_type(self) -> str:
        return self.value.split(".", 1)[0]


AUDIT_ACTIONS = frozenset(a.value for a in AuditAction)


def _dump(payload):
    if payload is None:
        return None
    return json.dumps(payload, default=str, ensure_ascii=False)


def _load(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


class AuditLog(db.Model):
    """
    Immutable audit trail for every mutating action.

    One row per action. ``before_json`` is set for updates and deletes,
    ``after_json`` for creates and updates. Rows are never updated or
    deleted by the application.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_tenant_created", "tenant_id", "created_at"),
        db.Index("idx_audit_resource", "resource_type", "resource_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Acting user (NULL for system entries)",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="workflow.approve | invoice.status_change | …",
    )
    resource_type = db.Column(db.String(30), nullable=False)
    resource_id = db.Column(db.String(36), nullable=True)

    # Change payload (JSON text, serialised with default=str)
    before_json = db.Column(db.Text, nullable=True)
    after_json = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    # Timestamp (immutable)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def before(self):
        return _load(self.before_json)

    @property
    def after(self):
        return _load(self.after_json)

    @property
    def meta(self):
        return _load(self.metadata_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "before": self.before,
            "after": self.after,
            "metadata": self.meta,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.resource_type}/{self.resource_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    actor_id: int | None,
    *,
    tenant_id: int,
    action: AuditAction,
    resource_type: str,
    resource_id,
    before: dict | None = None,
    after: dict | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so the entry commits or rolls
    back together with the mutation it describes.

    Raises:
        ValueError: *action* is not part of the AuditAction vocabulary.

    Returns the (flushed) AuditLog instance.
    """
    if not isinstance(action, AuditAction):
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action!r}")
        action = AuditAction(action)

    log = AuditLog(
        tenant_id=tenant_id,
        user_id=actor_id,
        action=action.value,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        before_json=_dump(before),
        after_json=_dump(after),
        metadata_json=_dump(metadata),
    )
    db.session.add(log)
    db.session.flush()
    return log
