"""
Back-office Workflow Engine — Flask Application Factory.

Usage:
    from backoffice import create_app
    app = create_app()          # uses APP_ENV or 'development'
    app = create_app("testing") # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from backoffice.config import config
from backoffice.core.exceptions import AppError
from backoffice.middleware.jwt_auth import init_jwt_middleware
from backoffice.middleware.logging_config import configure_logging
from backoffice.middleware.rate_limiter import init_rate_limits
from backoffice.middleware.tenant_context import init_tenant_context
from backoffice.middleware.timing import init_request_timing
from backoffice.models import db
from backoffice.services.storage import LocalFileStorage
from backoffice.utils.errors import api_error, error_response

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # Document storage adapter; tests swap in their own implementation
    app.extensions["file_storage"] = LocalFileStorage(app.config["UPLOAD_FOLDER"])

    # ── Middleware (order matters) ───────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Import all models so Alembic and create_all see them ─────────────
    from backoffice.models import audit as _audit_models            # noqa: F401
    from backoffice.models import auth as _auth_models              # noqa: F401
    from backoffice.models import document as _document_models      # noqa: F401
    from backoffice.models import expense as _expense_models        # noqa: F401
    from backoffice.models import invoice as _invoice_models        # noqa: F401
    from backoffice.models import notification as _notification_models  # noqa: F401
    from backoffice.models import project as _project_models        # noqa: F401
    from backoffice.models import timesheet as _timesheet_models    # noqa: F401
    from backoffice.models import workflow as _workflow_models      # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from backoffice.blueprints.admin_bp import admin_bp
    from backoffice.blueprints.dashboard_bp import dashboard_bp
    from backoffice.blueprints.expense_bp import expense_bp
    from backoffice.blueprints.invoice_bp import invoice_bp
    from backoffice.blueprints.notification_bp import notification_bp
    from backoffice.blueprints.project_bp import project_bp
    from backoffice.blueprints.timesheet_bp import timesheet_bp
    from backoffice.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(timesheet_bp)
    app.register_blueprint(expense_bp)
    app.register_blueprint(invoice_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(dashboard_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    @click.option("--tenant", "tenant_name", default="Demo Co.", help="Tenant display name")
    def seed_demo_cmd(tenant_name):
        """Create a demo tenant with one user per role and print their tokens."""
        from backoffice.seed import seed_demo_tenant
        tokens = seed_demo_tenant(tenant_name)
        for email, token in tokens.items():
            click.echo(f"{email}\t{token}")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    @limiter.exempt
    def health():
        return {"status": "ok", "app": "Back-office Workflow Engine"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(AppError)
    def app_error(exc):
        return error_response(exc)

    @app.errorhandler(404)
    def not_found(e):
        return api_error("ERR-SYS-404", "Not found", status=404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error("ERR-SYS-405", "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error("ERR-VAL-F02", "Files must be 10MB or smaller", status=413)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error("ERR-SYS-429", f"Too many requests: {e.description}", status=429)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error("ERR-SYS-001", "Internal server error", status=500)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
