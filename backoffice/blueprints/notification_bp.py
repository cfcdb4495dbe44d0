"""
Notification inbox endpoints (caller's own notifications only).

    GET    /api/v1/notifications               latest (unread_only)
    GET    /api/v1/notifications/unread-count
    PATCH  /api/v1/notifications/<id>/read
    POST   /api/v1/notifications/mark-all-read
"""

from flask import Blueprint

from backoffice.blueprints import auth_required, query_flag, respond
from backoffice.core.result import run_action
from backoffice.services.notification import NotificationService
from backoffice.utils.errors import api_error

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@auth_required
def list_notifications(ctx):
    return respond(run_action(NotificationService.list_for_user, ctx, unread_only=query_flag("unread_only")))


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@auth_required
def unread_count(ctx):
    result = run_action(NotificationService.unread_count, ctx)
    if result.success:
        result.data = {"unread_count": result.data}
    return respond(result)


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
@auth_required
def mark_read(ctx, notification_id):
    result = run_action(NotificationService.mark_read, ctx, notification_id)
    if result.success and result.data is None:
        return api_error("ERR-NTF-001", "Notification not found", status=404)
    return respond(result)


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
@auth_required
def mark_all_read(ctx):
    result = run_action(NotificationService.mark_all_read, ctx)
    if result.success:
        result.data = {"marked_read": result.data}
    return respond(result)
