"""
Invoice endpoints.

    GET    /api/v1/invoices                 list (status, project_id, date_from, date_to)
    POST   /api/v1/invoices
    GET    /api/v1/invoices/<id>
    PUT    /api/v1/invoices/<id>            draft only; items are replaced
    PATCH  /api/v1/invoices/<id>/status     {"status": ...}
    DELETE /api/v1/invoices/<id>            draft only
"""

from flask import Blueprint, request

from backoffice.blueprints import auth_required, json_body, respond
from backoffice.core.result import run_action
from backoffice.services import invoice_service

invoice_bp = Blueprint("invoice", __name__, url_prefix="/api/v1")


@invoice_bp.route("/invoices", methods=["GET"])
@auth_required
def list_invoices(ctx):
    filters = {k: request.args.get(k) for k in ("status", "project_id", "date_from", "date_to")}
    return respond(run_action(invoice_service.list_invoices, ctx, filters))


@invoice_bp.route("/invoices", methods=["POST"])
@auth_required
def create_invoice(ctx):
    return respond(run_action(invoice_service.create_invoice, ctx, json_body()), 201)


@invoice_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
@auth_required
def get_invoice(ctx, invoice_id):
    return respond(run_action(invoice_service.get_invoice, ctx, invoice_id))


@invoice_bp.route("/invoices/<int:invoice_id>", methods=["PUT"])
@auth_required
def update_invoice(ctx, invoice_id):
    return respond(run_action(invoice_service.update_invoice, ctx, invoice_id, json_body()))


@invoice_bp.route("/invoices/<int:invoice_id>/status", methods=["PATCH"])
@auth_required
def update_invoice_status(ctx, invoice_id):
    return respond(run_action(invoice_service.update_invoice_status, ctx, invoice_id, json_body().get("status")))


@invoice_bp.route("/invoices/<int:invoice_id>", methods=["DELETE"])
@auth_required
def delete_invoice(ctx, invoice_id):
    return respond(run_action(invoice_service.delete_invoice, ctx, invoice_id))
