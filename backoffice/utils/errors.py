"""Standardised API error responses.

Usage
-----
    from backoffice.utils.errors import api_error, error_response

    return api_error("ERR-VAL-001", "title is required")
    return error_response(exc)            # any AppError
"""

from __future__ import annotations

from flask import jsonify

from backoffice.core.exceptions import AppError


# ── Prefix → default HTTP status ──────────────────────────────────────
_PREFIX_STATUS: dict[str, int] = {
    "ERR-AUTH": 403,
    "ERR-VAL": 400,
    "ERR-SYS": 500,
}


def status_for_code(code: str) -> int:
    """Best-effort HTTP status for a bare error code."""
    for prefix, status in _PREFIX_STATUS.items():
        if code.startswith(prefix):
            return status
    return 400


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (``ERR-VAL-001`` ...).
    message : str
        Human-readable explanation for the UI.
    status : int, optional
        HTTP status override. Falls back to the code prefix mapping.
    details : dict, optional
        Extra structured payload (field-level validation details).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or status_for_code(code)

    body: dict = {
        "success": False,
        "error": {"code": code, "message": message},
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_response(exc: AppError):
    """Render a typed service error with its class-defined HTTP status."""
    return api_error(
        exc.code,
        exc.message,
        status=exc.http_status,
        details=getattr(exc, "details", None),
    )
