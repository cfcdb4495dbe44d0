"""
JWT Auth Middleware — parses the bearer token and builds the AuthContext.

Sets, for every /api/v1 request:
    g.jwt_user_id    — ``sub`` of a valid access token, else None
    g.jwt_tenant_id  — ``tenant_id`` claim, else None
    g.auth_context   — AuthContext with roles re-read from user_roles

Invalid or expired tokens are not rejected here; the request simply stays
unauthenticated and the blueprint answers ERR-AUTH-001.
"""

import logging

import jwt as pyjwt
from flask import g, request

from backoffice.services.jwt_service import decode_access_token
from backoffice.services.permission import load_auth_context

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/documents/download",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.auth_context = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token on %s", path)
            return

        g.jwt_user_id = payload["sub"]
        g.jwt_tenant_id = payload.get("tenant_id")
        g.auth_context = load_auth_context(g.jwt_user_id, g.jwt_tenant_id)
