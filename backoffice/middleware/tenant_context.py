"""
Tenant Context Middleware — blocks requests into unusable tenants.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler

For a JWT-authenticated request the tenant named in the token must exist,
be active and not be soft-deleted. The one exception is the restore
endpoint, which must stay reachable for a soft-deleted tenant.
"""

import logging

from flask import g, request

from backoffice.models import db
from backoffice.models.auth import Tenant, User
from backoffice.utils.errors import api_error

logger = logging.getLogger(__name__)

RESTORE_PATH = "/api/v1/admin/tenant/restore"


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        tenant_id = getattr(g, "jwt_tenant_id", None)
        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return None

        user = db.session.get(User, user_id)
        if user is None or user.status != "active":
            logger.warning("Token for unusable user %s", user_id, extra={"event_type": "auth_user_inactive"})
            return api_error("ERR-AUTH-001", "This account is not active", status=401)

        if tenant_id is None:
            return None

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("JWT tenant_id %s not found", tenant_id)
            return api_error("ERR-AUTH-003", "Tenant not found", status=401)

        if tenant.is_deleted and request.path != RESTORE_PATH:
            logger.warning("Request into deleted tenant %s", tenant_id,
                           extra={"tenant_id": tenant_id, "event_type": "tenant_deleted"})
            return api_error("ERR-AUTH-003", "This tenant has been deleted", status=403)

        if not tenant.is_active:
            logger.warning("Request into deactivated tenant %s", tenant_id,
                           extra={"tenant_id": tenant_id, "event_type": "tenant_inactive"})
            return api_error("ERR-AUTH-003", "Tenant account is deactivated", status=403)

        g.tenant = tenant
        return None
