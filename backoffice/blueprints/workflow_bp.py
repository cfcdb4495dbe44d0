"""
Workflow (approval request) endpoints.

    GET    /api/v1/workflows                 list (mine, status, type)
    POST   /api/v1/workflows                 create (draft or submitted)
    GET    /api/v1/workflows/pending         awaiting the caller
    GET    /api/v1/workflows/approvers       eligible approvers
    GET    /api/v1/workflows/<id>
    PUT    /api/v1/workflows/<id>
    POST   /api/v1/workflows/<id>/submit
    POST   /api/v1/workflows/<id>/withdraw
    POST   /api/v1/workflows/<id>/approve
    POST   /api/v1/workflows/<id>/reject     {"reason": ...}
"""

from flask import Blueprint, request

from backoffice.blueprints import auth_required, json_body, query_flag, respond
from backoffice.core.result import run_action
from backoffice.services import workflow_service

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


@workflow_bp.route("/workflows", methods=["GET"])
@auth_required
def list_workflows(ctx):
    filters = {
        "mine": query_flag("mine"),
        "status": request.args.get("status"),
        "type": request.args.get("type"),
    }
    return respond(run_action(workflow_service.list_workflows, ctx, filters))


@workflow_bp.route("/workflows", methods=["POST"])
@auth_required
def create_workflow(ctx):
    return respond(run_action(workflow_service.create_workflow, ctx, json_body()), 201)


@workflow_bp.route("/workflows/pending", methods=["GET"])
@auth_required
def pending_workflows(ctx):
    return respond(run_action(workflow_service.get_pending_workflows, ctx))


@workflow_bp.route("/workflows/approvers", methods=["GET"])
@auth_required
def list_approvers(ctx):
    return respond(run_action(workflow_service.get_approvers, ctx))


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
@auth_required
def get_workflow(ctx, workflow_id):
    return respond(run_action(workflow_service.get_workflow, ctx, workflow_id))


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["PUT"])
@auth_required
def update_workflow(ctx, workflow_id):
    return respond(run_action(workflow_service.update_workflow, ctx, workflow_id, json_body()))


@workflow_bp.route("/workflows/<int:workflow_id>/<any(submit, withdraw):action>", methods=["POST"])
@auth_required
def transition_workflow(ctx, workflow_id, action):
    return respond(run_action(workflow_service.transition_workflow, ctx, workflow_id, action))


@workflow_bp.route("/workflows/<int:workflow_id>/approve", methods=["POST"])
@auth_required
def approve_workflow(ctx, workflow_id):
    return respond(run_action(workflow_service.approve_workflow, ctx, workflow_id))


@workflow_bp.route("/workflows/<int:workflow_id>/reject", methods=["POST"])
@auth_required
def reject_workflow(ctx, workflow_id):
    reason = json_body().get("reason")
    return respond(run_action(workflow_service.reject_workflow, ctx, workflow_id, reason))
