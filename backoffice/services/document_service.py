"""
Document Service — project document metadata and storage coordination.

Upload order: validate → store bytes → insert row → audit → commit. When
the database write fails after the bytes were stored, the stored object is
removed again so that storage never holds a file without a row.
"""

import logging
import re
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.auth_context import AuthContext, Role
from backoffice.core.exceptions import AuthorizationError, NotFoundError, SystemError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditAction, write_audit
from backoffice.models.document import ALLOWED_MIME_TYPES, MAX_DOCUMENT_SIZE, Document
from backoffice.models.project import Project
from backoffice.services.helpers.scoped_queries import get_scoped_or_none
from backoffice.services.permission import has_role, is_project_member, require_tenant
from backoffice.services.storage import StorageError, get_storage
from backoffice.utils.helpers import db_commit_or_raise

logger = logging.getLogger(__name__)

DOCUMENT_MANAGER_ROLES = frozenset({Role.PM, Role.TENANT_ADMIN})

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._\-\u3000-\u9FAF\uF900-\uFAFF]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name or "file")


def _require_access(ctx: AuthContext, project_id: int, tenant_id: int):
    if is_project_member(project_id, ctx.user_id) or has_role(ctx, tenant_id, DOCUMENT_MANAGER_ROLES):
        return
    raise AuthorizationError("ERR-AUTH-F01", "You do not have access to this project")


def _get_document(tenant_id: int, document_id) -> Document:
    doc = get_scoped_or_none(Document, document_id, tenant_id=tenant_id)
    if doc is None:
        raise NotFoundError("ERR-DOC-001", "Document", document_id, tenant_id=tenant_id)
    return doc


# ── Queries ──────────────────────────────────────────────────────────────────


def list_documents(ctx: AuthContext, project_id) -> list[dict]:
    tenant_id = require_tenant(ctx)
    project = get_scoped_or_none(Project, project_id, tenant_id=tenant_id)
    if project is None:
        raise NotFoundError("ERR-PJ-001", "Project", project_id, tenant_id=tenant_id)
    _require_access(ctx, project.id, tenant_id)

    docs = db.session.execute(
        select(Document)
        .where(Document.tenant_id == tenant_id, Document.project_id == project.id)
        .order_by(Document.created_at.desc(), Document.id.desc())
    ).scalars()
    return [d.to_dict() for d in docs]


# ── Upload ───────────────────────────────────────────────────────────────────


def upload_document(ctx: AuthContext, project_id, filename, content, mime_type) -> dict:
    """
    Store a file for a project and record its metadata.

    Args:
        filename: Original client file name (kept as the display name).
        content: File bytes (None when no file was sent).
        mime_type: Client-declared content type.
    """
    tenant_id = require_tenant(ctx)
    if not has_role(ctx, tenant_id, DOCUMENT_MANAGER_ROLES):
        raise AuthorizationError("ERR-AUTH-F02", "You do not have permission to upload documents")

    project = get_scoped_or_none(Project, project_id, tenant_id=tenant_id)
    if project is None:
        raise ValidationError("ERR-VAL-F01", "The selected project was not found", details={"project_id": project_id})
    if content is None or not filename:
        raise ValidationError("ERR-VAL-F01", "No file was selected", details={"file": "required"})
    if len(content) > MAX_DOCUMENT_SIZE:
        raise ValidationError("ERR-VAL-F02", "Files must be 10MB or smaller", details={"file_size": len(content)})
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError("ERR-VAL-F03", "This file type is not allowed", details={"mime_type": mime_type})

    storage = get_storage()
    path = f"{tenant_id}/{project.id}/{uuid.uuid4()}_{sanitize_filename(filename)}"
    try:
        storage.save(path, content, mime_type)
    except StorageError as exc:
        raise SystemError(str(exc), code="ERR-SYS-F01") from exc

    try:
        doc = Document(
            tenant_id=tenant_id,
            project_id=project.id,
            name=filename,
            file_path=path,
            file_size=len(content),
            mime_type=mime_type,
            uploaded_by=ctx.user_id,
        )
        db.session.add(doc)
        db.session.flush()
        write_audit(
            ctx.user_id,
            tenant_id=tenant_id,
            action=AuditAction.DOCUMENT_UPLOAD,
            resource_type="document",
            resource_id=doc.id,
            after={"name": filename, "file_size": len(content), "mime_type": mime_type, "project_id": project.id},
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        try:
            storage.remove(path)
        except StorageError:
            logger.exception("Orphaned upload could not be removed: %s", path)
        raise SystemError(str(getattr(exc, "orig", None) or exc)) from exc

    logger.info(
        "Document %s uploaded to project %s", doc.id, project.id,
        extra={"tenant_id": tenant_id, "user_id": ctx.user_id, "event_type": "document.upload"},
    )
    return doc.to_dict()


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_document(ctx: AuthContext, document_id) -> dict:
    tenant_id = require_tenant(ctx)
    if not has_role(ctx, tenant_id, DOCUMENT_MANAGER_ROLES):
        raise AuthorizationError("ERR-AUTH-F02", "You do not have permission to delete documents")
    doc = _get_document(tenant_id, document_id)

    try:
        get_storage().remove(doc.file_path)
    except StorageError:
        logger.exception(
            "ERR-SYS-F02: storage deletion failed for document %s (%s)", doc.id, doc.file_path,
            extra={"tenant_id": tenant_id, "event_type": "storage_remove_failed"},
        )

    before = {"name": doc.name, "file_size": doc.file_size, "mime_type": doc.mime_type, "project_id": doc.project_id}
    doc_id = doc.id
    db.session.delete(doc)
    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.DOCUMENT_DELETE,
        resource_type="document",
        resource_id=doc_id,
        before=before,
    )
    db_commit_or_raise()
    return {"id": doc_id, "deleted": True}


# ── Download ─────────────────────────────────────────────────────────────────


def get_download_url(ctx: AuthContext, document_id) -> dict:
    tenant_id = require_tenant(ctx)
    doc = _get_document(tenant_id, document_id)
    _require_access(ctx, doc.project_id, tenant_id)

    try:
        url = get_storage().signed_url(doc.file_path)
    except StorageError as exc:
        raise SystemError(str(exc), code="ERR-SYS-F01") from exc

    write_audit(
        ctx.user_id,
        tenant_id=tenant_id,
        action=AuditAction.DOCUMENT_DOWNLOAD,
        resource_type="document",
        resource_id=doc.id,
        metadata={"name": doc.name},
    )
    db_commit_or_raise()
    return {"url": url, "name": doc.name}
