"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter instance is created in backoffice/__init__.py with no default
limits; this module attaches limits per route group after the blueprints
are registered.

    - admin (invites, password resets): 30/minute
    - documents (uploads):              60/minute
    - everything else under /api/v1:    300/minute

Rate limiting is disabled in testing mode.
"""

import logging

logger = logging.getLogger(__name__)

ADMIN_LIMIT = "30/minute"
UPLOAD_LIMIT = "60/minute"
DEFAULT_LIMIT = "300/minute"

_DEFAULT_BLUEPRINTS = ("workflow", "timesheet", "expense", "invoice", "notification", "dashboard")


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("admin")
    if bp:
        limiter.limit(ADMIN_LIMIT)(bp)

    bp = app.blueprints.get("project")
    if bp:
        limiter.limit(UPLOAD_LIMIT)(bp)

    for name in _DEFAULT_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp:
            limiter.limit(DEFAULT_LIMIT)(bp)

    logger.info("Rate limiter configured: admin=%s project=%s default=%s",
                ADMIN_LIMIT, UPLOAD_LIMIT, DEFAULT_LIMIT)
