"""
Workflow domain model — generic approvable request.

Models:
    - Workflow: expense / leave / purchase / other request routed to one approver.

Invariants maintained by workflow_service:
    - approved_at is set iff status == "approved"
    - rejection_reason is set iff status == "rejected"
    - workflow_number is unique per tenant and never reused
"""

from backoffice.models import db
from backoffice.models.base import TenantModel, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

WORKFLOW_TYPES = ("expense", "leave", "purchase", "other")
WORKFLOW_STATUSES = ("draft", "submitted", "approved", "rejected", "withdrawn")
WORKFLOW_TITLE_MAX = 200


class Workflow(TenantModel):
    __tablename__ = "workflows"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "workflow_number", name="uq_workflow_tenant_number"),
        db.Index("ix_workflows_tenant_status", "tenant_id", "status"),
        db.Index("ix_workflows_approver", "approver_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_number = db.Column(db.String(20), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="other")
    title = db.Column(db.String(WORKFLOW_TITLE_MAX), nullable=False, default="")
    description = db.Column(db.Text)
    amount = db.Column(db.Integer, nullable=True)
    date_from = db.Column(db.Date, nullable=True)
    date_to = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft")
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workflow_number": self.workflow_number,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "amount": self.amount,
            "date_from": iso(self.date_from),
            "date_to": iso(self.date_to),
            "status": self.status,
            "approver_id": self.approver_id,
            "rejection_reason": self.rejection_reason,
            "approved_at": iso(self.approved_at),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Workflow {self.workflow_number} [{self.status}]>"
