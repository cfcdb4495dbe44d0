"""Dashboard KPI endpoint: GET /api/v1/dashboard."""

from flask import Blueprint

from backoffice.blueprints import auth_required, respond
from backoffice.core.result import run_action
from backoffice.services import dashboard_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1")


@dashboard_bp.route("/dashboard", methods=["GET"])
@auth_required
def dashboard(ctx):
    return respond(run_action(dashboard_service.get_dashboard_kpis, ctx))
