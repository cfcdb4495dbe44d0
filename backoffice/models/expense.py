"""
Expense domain model.

Every Expense is created together with exactly one Workflow (type=expense)
in the same transaction; the workflow carries the approval lifecycle.
"""

from backoffice.models import db
from backoffice.models.base import TenantModel, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

EXPENSE_CATEGORIES = ("交通費", "宿泊費", "会議費", "消耗品費", "通信費", "その他")
EXPENSE_MIN_AMOUNT = 1
EXPENSE_MAX_AMOUNT = 10_000_000


class Expense(TenantModel):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    category = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    expense_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text)
    receipt_url = db.Column(db.String(500))
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    workflow = db.relationship("Workflow", lazy="joined")

    def to_dict(self, include_workflow=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workflow_id": self.workflow_id,
            "project_id": self.project_id,
            "category": self.category,
            "amount": self.amount,
            "expense_date": iso(self.expense_date),
            "description": self.description,
            "receipt_url": self.receipt_url,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }
        if include_workflow and self.workflow is not None:
            d["workflow"] = self.workflow.to_dict()
        return d

    def __repr__(self):
        return f"<Expense {self.id}: {self.category} ¥{self.amount}>"
