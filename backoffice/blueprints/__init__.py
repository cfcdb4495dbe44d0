"""
Shared helpers for the /api/v1 blueprints.

Views never touch the ORM: they read the AuthContext built by the JWT
middleware, hand request data to a service through ``run_action`` and
serialise the resulting ActionResult.
"""

import functools

from flask import g, jsonify, request

from backoffice.utils.errors import api_error


def auth_required(fn):
    """Pass the caller's AuthContext as the first view argument; 401 without one."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        ctx = getattr(g, "auth_context", None)
        if ctx is None:
            return api_error("ERR-AUTH-001", "Authentication required", status=401)
        return fn(ctx, *args, **kwargs)

    return wrapper


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def query_flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def respond(result, status: int | None = None):
    """Render an ActionResult; *status* overrides the success status (e.g. 201)."""
    http_status = (status or result.http_status) if result.success else result.http_status
    body = result.to_dict()
    if not result.success and result.details:
        body["details"] = result.details
    return jsonify(body), http_status
