"""
Shiftbook offline client
Flask Application Factory.

Usage:
    from shiftbook import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS

from shiftbook.config import config
from shiftbook.context import init_client_context
from shiftbook.middleware.logging_config import configure_logging
from shiftbook.middleware.timing import init_request_timing
from shiftbook.models import db
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections.

    Also turns off pysqlite's implicit BEGIN; ``_sqlite_begin`` emits it
    instead, so SAVEPOINTs always nest inside a real transaction.
    """
    if "sqlite" in type(dbapi_conn).__module__:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


def create_app(config_name=None, *, clock=None, http_session=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        clock: Optional epoch-milliseconds callable for the client context.
        http_session: Optional requests.Session used to reach the sync server.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 16 * 1024 * 1024)  # backups can be large

    # ── Import all models so the migration sees every table ──────────────
    from shiftbook.models import audit as _audit_models           # noqa: F401
    from shiftbook.models import auth as _auth_models             # noqa: F401
    from shiftbook.models import logbook as _logbook_models       # noqa: F401
    from shiftbook.models import scheduling as _scheduling_models  # noqa: F401
    from shiftbook.models import settings as _settings_models     # noqa: F401
    from shiftbook.models import workforce as _workforce_models   # noqa: F401

    # ── Schema migration + client context ────────────────────────────────
    from shiftbook.services.schema_service import migrate_schema

    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]) or ".", exist_ok=True)

    with app.app_context():
        migrate_schema()
        init_client_context(app, clock=clock or now_ms, http_session=http_session)

    # ── Blueprints ───────────────────────────────────────────────────────
    from shiftbook.blueprints.health_bp import health_bp
    from shiftbook.blueprints.auth_bp import auth_bp
    from shiftbook.blueprints.shifts_bp import shifts_bp
    from shiftbook.blueprints.sync_bp import sync_bp
    from shiftbook.blueprints.backup_bp import backup_bp
    from shiftbook.blueprints.audit_bp import audit_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(backup_bp)
    app.register_blueprint(audit_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
