"""
Administration endpoints (tenant_admin / it_admin).

Tenant
    GET    /api/v1/admin/tenant
    PUT    /api/v1/admin/tenant                   name, contact_email, address
    PUT    /api/v1/admin/tenant/settings          {"settings": {...}}
    DELETE /api/v1/admin/tenant                   {"confirmation": <tenant name>}
    POST   /api/v1/admin/tenant/restore

Users
    GET    /api/v1/admin/users                    search, role, status, page, per_page
    POST   /api/v1/admin/users/invite             {"email", "roles", "display_name"}
    PUT    /api/v1/admin/users/<id>/roles         {"roles": [...]}
    POST   /api/v1/admin/users/<id>/disable
    POST   /api/v1/admin/users/<id>/enable
    POST   /api/v1/admin/users/<id>/activate
    POST   /api/v1/admin/users/<id>/reset-password

Audit log
    GET    /api/v1/admin/audit-logs               user_id, action, resource_type, date_from, date_to, page, per_page
    GET    /api/v1/admin/audit-logs/filters
"""

from flask import Blueprint, request

from backoffice.blueprints import auth_required, json_body, respond
from backoffice.core.result import run_action
from backoffice.services import audit_service, tenant_service, user_admin_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


# ═══════════════════════════════════════════════════════════════════════════
#  TENANT
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/tenant", methods=["GET"])
@auth_required
def get_tenant(ctx):
    return respond(run_action(tenant_service.get_tenant_detail, ctx))


@admin_bp.route("/tenant", methods=["PUT"])
@auth_required
def update_tenant(ctx):
    return respond(run_action(tenant_service.update_tenant, ctx, json_body()))


@admin_bp.route("/tenant/settings", methods=["PUT"])
@auth_required
def update_tenant_settings(ctx):
    return respond(run_action(tenant_service.update_tenant_settings, ctx, json_body().get("settings")))


@admin_bp.route("/tenant", methods=["DELETE"])
@auth_required
def delete_tenant(ctx):
    return respond(run_action(tenant_service.delete_tenant, ctx, json_body().get("confirmation")))


@admin_bp.route("/tenant/restore", methods=["POST"])
@auth_required
def restore_tenant(ctx):
    return respond(run_action(tenant_service.restore_tenant, ctx))


# ═══════════════════════════════════════════════════════════════════════════
#  USERS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@auth_required
def list_users(ctx):
    return respond(run_action(
        user_admin_service.list_users, ctx,
        search=request.args.get("search"),
        role=request.args.get("role"),
        status=request.args.get("status"),
        page=request.args.get("page", 1),
        per_page=request.args.get("per_page", user_admin_service.DEFAULT_PER_PAGE),
    ))


@admin_bp.route("/users/invite", methods=["POST"])
@auth_required
def invite_user(ctx):
    return respond(run_action(user_admin_service.invite_user, ctx, json_body()), 201)


@admin_bp.route("/users/<int:user_id>/roles", methods=["PUT"])
@auth_required
def change_roles(ctx, user_id):
    return respond(run_action(user_admin_service.change_user_roles, ctx, user_id, json_body().get("roles")))


@admin_bp.route("/users/<int:user_id>/<any(disable, enable):action>", methods=["POST"])
@auth_required
def change_status(ctx, user_id, action):
    return respond(run_action(user_admin_service.change_user_status, ctx, user_id, action))


@admin_bp.route("/users/<int:user_id>/activate", methods=["POST"])
@auth_required
def activate_user(ctx, user_id):
    return respond(run_action(user_admin_service.activate_user, ctx, user_id))


@admin_bp.route("/users/<int:user_id>/reset-password", methods=["POST"])
@auth_required
def reset_password(ctx, user_id):
    return respond(run_action(user_admin_service.reset_password, ctx, user_id))


# ═══════════════════════════════════════════════════════════════════════════
#  AUDIT LOG
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/audit-logs", methods=["GET"])
@auth_required
def list_audit_logs(ctx):
    return respond(run_action(audit_service.list_audit_logs, ctx, request.args.to_dict()))


@admin_bp.route("/audit-logs/filters", methods=["GET"])
@auth_required
def audit_filter_options(ctx):
    return respond(run_action(audit_service.get_audit_filter_options, ctx))
