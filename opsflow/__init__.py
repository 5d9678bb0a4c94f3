"""
Operations Approval Platform
Flask Application Factory.

Usage:
    from opsflow import create_app
    app = create_app()          # uses APP_ENV or 'development'
    app = create_app("testing") # for tests
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from opsflow.config import config
from opsflow.models import db
from opsflow.middleware.logging_config import configure_logging
from opsflow.middleware.timing import init_request_timing
from opsflow.middleware.rate_limiter import init_rate_limits
from opsflow.middleware.jwt_auth import init_jwt_middleware

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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def init_services(app):
    """Build the service graph once and park it on ``app.extensions``."""
    from opsflow.services.actor_resolver import ActorResolver
    from opsflow.services.approval_engine import WorkflowEngine
    from opsflow.services.audit_service import AuditService
    from opsflow.services.document_store import DocumentStore
    from opsflow.services.failure_reporter import FailureReporter
    from opsflow.services.notification import NotificationService
    from opsflow.services.push_channel import build_push_channel

    reporter = FailureReporter(maxlen=app.config.get("FAILURE_RING_SIZE", 200))
    push = build_push_channel(app.config.get("PUSH_CHANNEL_URL"))
    resolver = ActorResolver.from_config(app.config)
    audit = AuditService(reporter)
    notifier = NotificationService(resolver, push, reporter, audit=audit)
    engine = WorkflowEngine(resolver, DocumentStore(), notifier, audit)

    app.extensions["failure_reporter"] = reporter
    app.extensions["push_channel"] = push
    app.extensions["actor_resolver"] = resolver
    app.extensions["audit_service"] = audit
    app.extensions["notification_service"] = notifier
    app.extensions["workflow_engine"] = engine


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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

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

    # ── Services ─────────────────────────────────────────────────────────
    init_services(app)

    # ── Request timing, identity, actor loading (order matters) ──────────
    init_request_timing(app)
    init_jwt_middleware(app)
    from opsflow.auth import init_auth
    init_auth(app)

    # ── Import all models so db.create_all() sees them ───────────────────
    from opsflow.models import auth as _auth_models              # noqa: F401
    from opsflow.models import document as _document_models      # noqa: F401
    from opsflow.models import notification as _notification_models  # noqa: F401
    from opsflow.models import audit as _audit_models            # noqa: F401

    with app.app_context():
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
            os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from opsflow.blueprints.audit_bp import audit_bp
    from opsflow.blueprints.document_bp import document_bp
    from opsflow.blueprints.health_bp import health_bp
    from opsflow.blueprints.notification_bp import notification_bp

    app.register_blueprint(document_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-directory")
    @click.option("--reset", is_flag=True, help="Drop existing directory rows first.")
    def seed_directory_cmd(reset):
        """Seed demo departments and actors."""
        from opsflow.services.seed import seed_directory
        created = seed_directory(reset=reset)
        logger.info("Seeded %s departments and %s actors.", created["departments"], created["actors"])

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
