"""
SLF Certification Workflow Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import atexit
import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.blueprints import register_blueprints, register_error_handlers
from app.config import config
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.security_headers import init_security_headers
from app.middleware.timing import init_request_timing
from app.models import db
from app.services.notification_hub import EXTENSION_KEY, NotificationHub

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    # Instantiated so ProductionConfig can refuse to start without secrets
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_security_headers(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            # request.data stays empty for form and multipart bodies
            if request.content_length and not request.is_json:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import audit as _audit_models            # noqa: F401
    from app.models import auth as _auth_models              # noqa: F401
    from app.models import document as _document_models      # noqa: F401
    from app.models import inspection as _inspection_models  # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import project as _project_models        # noqa: F401
    from app.models import report as _report_models          # noqa: F401

    # ── Notification hub ─────────────────────────────────────────────────
    hub = NotificationHub()
    hub.start()
    app.extensions[EXTENSION_KEY] = hub
    atexit.register(hub.stop)

    # ── Blueprints + error mapping ───────────────────────────────────────
    register_blueprints(app)
    register_error_handlers(app)

    # ── Local schema (migrations own production) ─────────────────────────
    if app.config.get("AUTO_CREATE_TABLES", config_name == "development"):
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-checklist")
    def seed_checklist_cmd():
        """Seed the built-in SLF inspection checklist items."""
        from app.services.inspection_service import seed_default_checklist_items
        count = seed_default_checklist_items()
        logger.info("Seeded %s new checklist items.", count)

    @app.cli.command("reconcile-project-leads")
    def reconcile_project_leads_cmd():
        """Recompute every project's cached lead from its team assignments."""
        from app.services.project_lifecycle import reconcile_project_leads
        fixed = reconcile_project_leads()
        logger.info("Reconciled %s project(s): %s", len(fixed), fixed)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
