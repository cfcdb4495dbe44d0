"""
Expense endpoints.

    GET    /api/v1/expenses              list (category)
    POST   /api/v1/expenses              creates the expense and its workflow
    GET    /api/v1/expenses/approvers
    GET    /api/v1/expenses/summary      date_from, date_to, category, project_id, approved_only
    GET    /api/v1/expenses/<id>
"""

from flask import Blueprint, request

from backoffice.blueprints import auth_required, json_body, query_flag, respond
from backoffice.core.result import run_action
from backoffice.services import expense_service

expense_bp = Blueprint("expense", __name__, url_prefix="/api/v1")


@expense_bp.route("/expenses", methods=["GET"])
@auth_required
def list_expenses(ctx):
    return respond(run_action(expense_service.list_expenses, ctx, category=request.args.get("category")))


@expense_bp.route("/expenses", methods=["POST"])
@auth_required
def create_expense(ctx):
    return respond(run_action(expense_service.create_expense, ctx, json_body()), 201)


@expense_bp.route("/expenses/approvers", methods=["GET"])
@auth_required
def expense_approvers(ctx):
    return respond(run_action(expense_service.get_expense_approvers, ctx))


@expense_bp.route("/expenses/summary", methods=["GET"])
@auth_required
def expense_summary(ctx):
    return respond(run_action(
        expense_service.get_expense_summary, ctx,
        request.args.get("date_from"),
        request.args.get("date_to"),
        category=request.args.get("category"),
        project_id=request.args.get("project_id", type=int),
        approved_only=query_flag("approved_only"),
    ))


@expense_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@auth_required
def get_expense(ctx, expense_id):
    return respond(run_action(expense_service.get_expense, ctx, expense_id))
