"""
Project, task and document endpoints.

Projects
    GET    /api/v1/projects                         list (status, mine)
    POST   /api/v1/projects
    GET    /api/v1/projects/<id>
    PUT    /api/v1/projects/<id>
    POST   /api/v1/projects/<id>/members            {"user_id": ...}
    DELETE /api/v1/projects/<id>/members/<user_id>
    GET    /api/v1/users                            tenant users (PM / assignee pickers)

Tasks
    GET    /api/v1/projects/<id>/tasks              list (status, assignee_id)
    POST   /api/v1/projects/<id>/tasks
    PUT    /api/v1/tasks/<id>
    PATCH  /api/v1/tasks/<id>/status                {"status": ...}
    DELETE /api/v1/tasks/<id>

Documents
    GET    /api/v1/projects/<id>/documents
    POST   /api/v1/projects/<id>/documents          multipart "file"
    DELETE /api/v1/documents/<id>
    GET    /api/v1/documents/<id>/url               short-lived signed link
    GET    /api/v1/documents/download?token=...     serves a signed link
"""

import logging

import jwt as pyjwt
from flask import Blueprint, request, send_file

from backoffice.blueprints import auth_required, json_body, query_flag, respond
from backoffice.core.result import run_action
from backoffice.services import document_service, project_service, task_service
from backoffice.services.storage import StorageError, get_storage, resolve_signed_path
from backoffice.utils.errors import api_error

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  PROJECTS
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects", methods=["GET"])
@auth_required
def list_projects(ctx):
    return respond(run_action(
        project_service.list_projects, ctx, status=request.args.get("status"), mine=query_flag("mine"),
    ))


@project_bp.route("/projects", methods=["POST"])
@auth_required
def create_project(ctx):
    return respond(run_action(project_service.create_project, ctx, json_body()), 201)


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
@auth_required
def get_project(ctx, project_id):
    return respond(run_action(project_service.get_project, ctx, project_id))


@project_bp.route("/projects/<int:project_id>", methods=["PUT"])
@auth_required
def update_project(ctx, project_id):
    return respond(run_action(project_service.update_project, ctx, project_id, json_body()))


@project_bp.route("/projects/<int:project_id>/members", methods=["POST"])
@auth_required
def add_member(ctx, project_id):
    return respond(run_action(project_service.add_member, ctx, project_id, json_body().get("user_id")), 201)


@project_bp.route("/projects/<int:project_id>/members/<int:user_id>", methods=["DELETE"])
@auth_required
def remove_member(ctx, project_id, user_id):
    return respond(run_action(project_service.remove_member, ctx, project_id, user_id))


@project_bp.route("/users", methods=["GET"])
@auth_required
def tenant_users(ctx):
    return respond(run_action(project_service.get_tenant_users, ctx))


# ═══════════════════════════════════════════════════════════════════════════
#  TASKS
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects/<int:project_id>/tasks", methods=["GET"])
@auth_required
def list_tasks(ctx, project_id):
    return respond(run_action(
        task_service.list_tasks, ctx, project_id,
        status=request.args.get("status"),
        assignee_id=request.args.get("assignee_id", type=int),
    ))


@project_bp.route("/projects/<int:project_id>/tasks", methods=["POST"])
@auth_required
def create_task(ctx, project_id):
    return respond(run_action(task_service.create_task, ctx, project_id, json_body()), 201)


@project_bp.route("/tasks/<int:task_id>", methods=["PUT"])
@auth_required
def update_task(ctx, task_id):
    return respond(run_action(task_service.update_task, ctx, task_id, json_body()))


@project_bp.route("/tasks/<int:task_id>/status", methods=["PATCH"])
@auth_required
def update_task_status(ctx, task_id):
    return respond(run_action(task_service.update_task_status, ctx, task_id, json_body().get("status")))


@project_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@auth_required
def delete_task(ctx, task_id):
    return respond(run_action(task_service.delete_task, ctx, task_id))


# ═══════════════════════════════════════════════════════════════════════════
#  DOCUMENTS
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects/<int:project_id>/documents", methods=["GET"])
@auth_required
def list_documents(ctx, project_id):
    return respond(run_action(document_service.list_documents, ctx, project_id))


@project_bp.route("/projects/<int:project_id>/documents", methods=["POST"])
@auth_required
def upload_document(ctx, project_id):
    upload = request.files.get("file")
    content = upload.read() if upload else None
    filename = upload.filename if upload else None
    mime_type = upload.mimetype if upload else None
    return respond(run_action(
        document_service.upload_document, ctx, project_id, filename, content, mime_type,
    ), 201)


@project_bp.route("/documents/<int:document_id>", methods=["DELETE"])
@auth_required
def delete_document(ctx, document_id):
    return respond(run_action(document_service.delete_document, ctx, document_id))


@project_bp.route("/documents/<int:document_id>/url", methods=["GET"])
@auth_required
def document_url(ctx, document_id):
    return respond(run_action(document_service.get_download_url, ctx, document_id))


@project_bp.route("/documents/download", methods=["GET"])
def download_document():
    """Serve a file named by a signed token; no bearer token required."""
    try:
        path = resolve_signed_path(request.args.get("token", ""))
    except pyjwt.ExpiredSignatureError:
        return api_error("ERR-AUTH-F01", "This download link has expired", status=403)
    except pyjwt.InvalidTokenError:
        return api_error("ERR-AUTH-F01", "Invalid download link", status=403)

    storage = get_storage()
    if not hasattr(storage, "open_path"):
        return api_error("ERR-SYS-F01", "Storage backend does not serve files directly", status=501)
    try:
        full_path = storage.open_path(path)
    except StorageError:
        logger.warning("Signed download for missing object %s", path)
        return api_error("ERR-DOC-001", "Document not found", status=404)
    return send_file(full_path, as_attachment=True, download_name=path.rsplit("/", 1)[-1].split("_", 1)[-1])
