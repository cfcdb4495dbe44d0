"""
Expense service tests.

Categories:
    1. Create with linked workflow (title, numbering, notification)
    2. Validation codes
    3. Atomicity of expense + workflow + audit
    4. Visibility and summary aggregation
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from backoffice.core.result import run_action
from backoffice.models import db
from backoffice.models.audit import AuditLog
from backoffice.models.auth import Tenant
from backoffice.models.expense import Expense
from backoffice.models.notification import Notification
from backoffice.models.workflow import Workflow
from backoffice.services import expense_service, workflow_service
from conftest import ctx_for, make_project, make_tenant, make_user


def _setup():
    t = make_tenant()
    pm = make_user(t, "pm@acme.example.com", roles=("pm",))
    member = make_user(t, "member@acme.example.com")
    accounting = make_user(t, "acct@acme.example.com", roles=("accounting",))
    p = make_project(t, pm, name="Client A", members=(member,))
    db.session.commit()
    return t, pm, member, accounting, p


def _expense(t, user, project, approver=None, **extra):
    data = {
        "category": "交通費",
        "amount": 5000,
        "expense_date": "2026-01-10",
        "project_id": project.id,
        "approver_id": approver.id if approver else None,
        "status": "submitted" if approver else "draft",
        **extra,
    }
    return expense_service.create_expense(ctx_for(user, t), data)


def _count(model):
    return db.session.execute(select(func.count(model.id))).scalar()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Create
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateExpense:
    def test_submitted_expense_with_workflow(self):
        t, _, member, accounting, p = _setup()

        result = _expense(t, member, p, approver=accounting)

        wf = result["workflow"]
        assert wf["type"] == "expense"
        assert wf["status"] == "submitted"
        assert wf["title"] == "経費申請: 交通費 ¥5,000"
        assert wf["amount"] == 5000
        assert wf["date_from"] == wf["date_to"] == "2026-01-10"
        assert wf["approver_id"] == accounting.id
        assert wf["workflow_number"] == "WF-000001"

        exp = result["expense"]
        assert exp["workflow_id"] == wf["id"]
        assert exp["category"] == "交通費"

        notif = db.session.execute(select(Notification)).scalar_one()
        assert notif.user_id == accounting.id
        assert notif.type == "workflow_submitted"

        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "expense.submit"

    def test_draft_needs_no_approver(self):
        t, _, member, _, p = _setup()
        result = _expense(t, member, p)
        assert result["workflow"]["status"] == "draft"
        assert _count(Notification) == 0
        assert db.session.execute(select(AuditLog.action)).scalar_one() == "expense.create"

    def test_workflow_is_approvable(self):
        t, _, member, accounting, p = _setup()
        result = _expense(t, member, p, approver=accounting)
        approved = workflow_service.approve_workflow(ctx_for(accounting, t), result["workflow"]["id"])
        assert approved["status"] == "approved"

    def test_numbering_shared_with_workflows(self):
        t, _, member, accounting, p = _setup()
        workflow_service.create_workflow(ctx_for(member, t), {"title": "Leave"})
        result = _expense(t, member, p, approver=accounting)
        assert result["workflow"]["workflow_number"] == "WF-000002"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Validation
# ═════════════════════════════════════════════════════════════════════════════


class TestExpenseValidation:
    @pytest.mark.parametrize("extra,code", [
        ({"category": "飲食費"}, "ERR-VAL-001"),
        ({"amount": 0}, "ERR-VAL-002"),
        ({"amount": 10_000_001}, "ERR-VAL-002"),
        ({"expense_date": ""}, "ERR-VAL-003"),
        ({"project_id": None}, "ERR-VAL-004"),
        ({"project_id": 99999}, "ERR-VAL-004"),
        ({"status": "submitted"}, "ERR-VAL-005"),
    ])
    def test_codes(self, extra, code):
        t, _, member, _, p = _setup()
        with pytest.raises(ValidationError) as exc_info:
            _expense(t, member, p, **extra)
        assert exc_info.value.code == code
        assert _count(Expense) == 0
        assert _count(Workflow) == 0

    def test_approver_role_checked(self):
        t, pm, member, _, p = _setup()
        with pytest.raises(ValidationError) as exc_info:
            _expense(t, member, p, approver=pm)
        assert exc_info.value.code == "ERR-VAL-005"

    def test_approver_list_includes_accounting(self):
        t, _, member, accounting, _ = _setup()
        ids = [u["id"] for u in expense_service.get_expense_approvers(ctx_for(member, t))]
        assert ids == [accounting.id]


# ═════════════════════════════════════════════════════════════════════════════
# 3. Atomicity
# ═════════════════════════════════════════════════════════════════════════════


class TestExpenseAtomicity:
    def test_audit_failure_rolls_back_everything(self, monkeypatch):
        t, _, member, accounting, p = _setup()

        def _boom(*args, **kwargs):
            raise SQLAlchemyError("audit insert failed")

        monkeypatch.setattr(expense_service, "write_audit", _boom)

        result = run_action(expense_service.create_expense, ctx_for(member, t), {
            "category": "交通費",
            "amount": 5000,
            "expense_date": "2026-01-10",
            "project_id": p.id,
            "approver_id": accounting.id,
            "status": "submitted",
        })

        assert result.success is False
        assert result.error["code"] == "ERR-SYS-001"
        assert _count(Expense) == 0
        assert _count(Workflow) == 0
        assert _count(Notification) == 0
        assert db.session.get(Tenant, t.id).workflow_seq == 0


# ═════════════════════════════════════════════════════════════════════════════
# 4. Queries
# ═════════════════════════════════════════════════════════════════════════════


class TestExpenseQueries:
    def test_list_visibility(self):
        t, pm, member, accounting, p = _setup()
        _expense(t, member, p)
        _expense(t, pm, p, category="宿泊費")
        assert len(expense_service.list_expenses(ctx_for(member, t))) == 1
        assert len(expense_service.list_expenses(ctx_for(accounting, t))) == 2
        only = expense_service.list_expenses(ctx_for(accounting, t), category="宿泊費")
        assert [e["category"] for e in only] == ["宿泊費"]
        assert only[0]["workflow"]["type"] == "expense"

    def test_get_other_users_expense(self):
        t, pm, member, accounting, p = _setup()
        exp = _expense(t, member, p)["expense"]
        assert expense_service.get_expense(ctx_for(accounting, t), exp["id"])["id"] == exp["id"]
        with pytest.raises(AuthorizationError):
            expense_service.get_expense(ctx_for(pm, t), exp["id"])
        with pytest.raises(NotFoundError) as exc_info:
            expense_service.get_expense(ctx_for(member, t), 424242)
        assert exc_info.value.code == "ERR-EXP-001"

    def test_summary(self):
        t, pm, member, accounting, p = _setup()
        other = make_project(t, pm, name="Client B", members=(member,))
        db.session.commit()
        _expense(t, member, p, amount=3000, expense_date="2026-01-05")
        _expense(t, member, p, category="宿泊費", amount=12000, expense_date="2026-02-03")
        _expense(t, member, other, amount=1000, expense_date="2026-02-20")
        _expense(t, member, p, amount=999, expense_date="2026-04-01")  # outside range

        summary = expense_service.get_expense_summary(ctx_for(accounting, t), "2026-01-01", "2026-03-31")

        assert summary["stats"] == {
            "total_amount": 16000,
            "total_count": 3,
            "avg_amount": 5333,
            "max_amount": 12000,
        }
        assert summary["by_category"][0] == {
            "category": "宿泊費", "count": 1, "total_amount": 12000, "percentage": 75.0,
        }
        assert summary["by_category"][1]["category"] == "交通費"
        assert summary["by_category"][1]["percentage"] == 25.0
        assert [x["name"] for x in summary["by_project"]] == ["Client A", "Client B"]
        assert summary["by_month"] == [
            {"month": "2026-01", "count": 1, "total_amount": 3000},
            {"month": "2026-02", "count": 2, "total_amount": 13000},
        ]

    def test_summary_approved_only(self):
        t, _, member, accounting, p = _setup()
        done = _expense(t, member, p, approver=accounting, amount=4000)
        _expense(t, member, p, amount=7000, expense_date="2026-01-11")
        workflow_service.approve_workflow(ctx_for(accounting, t), done["workflow"]["id"])

        summary = expense_service.get_expense_summary(
            ctx_for(accounting, t), "2026-01-01", "2026-01-31", approved_only=True,
        )
        assert summary["stats"]["total_amount"] == 4000

    def test_summary_empty_range(self):
        t, _, _, accounting, _ = _setup()
        summary = expense_service.get_expense_summary(ctx_for(accounting, t), "2026-01-01", "2026-01-31")
        assert summary["stats"] == {"total_amount": 0, "total_count": 0, "avg_amount": 0, "max_amount": 0}
        assert summary["by_category"] == []

    def test_summary_role_gate(self):
        t, _, member, _, _ = _setup()
        with pytest.raises(AuthorizationError):
            expense_service.get_expense_summary(ctx_for(member, t), "2026-01-01", "2026-01-31")

    def test_summary_range_order(self):
        t, _, _, accounting, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            expense_service.get_expense_summary(ctx_for(accounting, t), "2026-02-01", "2026-01-01")
        assert exc_info.value.code == "ERR-VAL-010"
