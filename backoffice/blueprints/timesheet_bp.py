"""
Timesheet endpoints.

    GET    /api/v1/timesheets             own entries (date_from, date_to, project_id)
    POST   /api/v1/timesheets
    PUT    /api/v1/timesheets/<id>
    DELETE /api/v1/timesheets/<id>
    POST   /api/v1/timesheets/bulk        {"entries": [...], "deleted_ids": [...]}
    GET    /api/v1/timesheets/report      date_from, date_to, project_id, member_id
"""

from flask import Blueprint, request

from backoffice.blueprints import auth_required, json_body, respond
from backoffice.core.result import run_action
from backoffice.services import timesheet_service

timesheet_bp = Blueprint("timesheet", __name__, url_prefix="/api/v1")


@timesheet_bp.route("/timesheets", methods=["GET"])
@auth_required
def list_timesheets(ctx):
    return respond(run_action(
        timesheet_service.list_timesheets, ctx,
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
        project_id=request.args.get("project_id", type=int),
    ))


@timesheet_bp.route("/timesheets", methods=["POST"])
@auth_required
def create_timesheet(ctx):
    return respond(run_action(timesheet_service.create_timesheet, ctx, json_body()), 201)


@timesheet_bp.route("/timesheets/<int:timesheet_id>", methods=["PUT"])
@auth_required
def update_timesheet(ctx, timesheet_id):
    return respond(run_action(timesheet_service.update_timesheet, ctx, timesheet_id, json_body()))


@timesheet_bp.route("/timesheets/<int:timesheet_id>", methods=["DELETE"])
@auth_required
def delete_timesheet(ctx, timesheet_id):
    return respond(run_action(timesheet_service.delete_timesheet, ctx, timesheet_id))


@timesheet_bp.route("/timesheets/bulk", methods=["POST"])
@auth_required
def bulk_upsert(ctx):
    data = json_body()
    return respond(run_action(
        timesheet_service.bulk_upsert_timesheets, ctx, data.get("entries") or [], data.get("deleted_ids") or [],
    ))


@timesheet_bp.route("/timesheets/report", methods=["GET"])
@auth_required
def timesheet_report(ctx):
    return respond(run_action(
        timesheet_service.get_timesheet_report, ctx,
        request.args.get("date_from"),
        request.args.get("date_to"),
        project_id=request.args.get("project_id", type=int),
        member_id=request.args.get("member_id", type=int),
    ))
