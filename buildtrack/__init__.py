"""
Factory Standards Build Tracker
Flask Application Factory.

Usage:
    from buildtrack import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from buildtrack.config import config
from buildtrack.models import db
from buildtrack.middleware.logging_config import configure_logging
from buildtrack.middleware.timing import init_request_timing
from buildtrack.middleware.rate_limiter import init_rate_limits
from buildtrack.middleware.jwt_auth import init_jwt_middleware

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware ──────────────────────────────────────────────
    init_jwt_middleware(app)

    # ── Request guards (Content-Type) ────────────────────────────────────
    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.content_length and "json" not in ct and "multipart/form-data" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so create_all / Alembic see them ───────────────
    from buildtrack.models import audit as _audit_models               # noqa: F401
    from buildtrack.models import auth as _auth_models                 # noqa: F401
    from buildtrack.models import client as _client_models             # noqa: F401
    from buildtrack.models import custom_shop as _custom_shop_models   # noqa: F401
    from buildtrack.models import email_log as _email_log_models       # noqa: F401
    from buildtrack.models import guitar as _guitar_models             # noqa: F401
    from buildtrack.models import invoice as _invoice_models           # noqa: F401
    from buildtrack.models import notification as _notification_models  # noqa: F401
    from buildtrack.models import outbox as _outbox_models             # noqa: F401
    from buildtrack.models import run as _run_models                   # noqa: F401
    from buildtrack.models import settings as _settings_models         # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from buildtrack.blueprints.audit_bp import audit_bp
    from buildtrack.blueprints.auth_bp import auth_bp
    from buildtrack.blueprints.clients_bp import clients_bp
    from buildtrack.blueprints.custom_shop_bp import custom_shop_bp
    from buildtrack.blueprints.functions_bp import functions_bp
    from buildtrack.blueprints.guitars_bp import guitars_bp
    from buildtrack.blueprints.health_bp import health_bp
    from buildtrack.blueprints.invoices_bp import invoices_bp
    from buildtrack.blueprints.notifications_bp import notifications_bp
    from buildtrack.blueprints.runs_bp import runs_bp
    from buildtrack.blueprints.settings_bp import settings_bp
    from buildtrack.blueprints.uploads_bp import uploads_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(functions_bp)
    app.register_blueprint(runs_bp)
    app.register_blueprint(guitars_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(custom_shop_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(uploads_bp)

    # ── Outbox handlers + callable functions (registered on import) ──────
    import importlib
    importlib.import_module("buildtrack.services.notification_handlers")
    importlib.import_module("buildtrack.services.callable_functions")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("outbox-dispatch")
    @click.option("--retry-failed", is_flag=True, help="Also re-run events that failed before.")
    @click.option("--limit", default=100, show_default=True)
    def outbox_dispatch_cmd(retry_failed, limit):
        """Run handlers for pending outbox events."""
        from buildtrack.services.outbox import dispatch_pending
        summary = dispatch_pending(limit=limit, include_failed=retry_failed)
        logger.info("Outbox dispatch: %s dispatched, %s failed.", summary["dispatched"], summary["failed"])

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", default=None)
    def create_admin_cmd(email, password, name):
        """Create an admin account, or promote an existing one."""
        from buildtrack.services import user_service
        user = user_service.get_user_by_email(email)
        if user is None:
            user = user_service.create_user(email, password=password, display_name=name, role="admin")
        else:
            user_service.set_role(user, "admin")
        db.session.commit()
        logger.info("Admin ready: %s (%s)", user.email, user.uid)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
