"""
PKM Submission Portal
Flask Application Factory.

Usage:
    from pkm_portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from pkm_portal.auth import init_caller_context
from pkm_portal.config import config
from pkm_portal.middleware.logging_config import configure_logging
from pkm_portal.middleware.timing import init_request_timing
from pkm_portal.models import db
from pkm_portal.services.container import WorkflowServices

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections.

    pysqlite's own BEGIN handling is switched off so SQLAlchemy controls
    transaction boundaries and SAVEPOINTs nest correctly.
    """
    if "sqlite" in type(dbapi_conn).__module__:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    """Open SQLite transactions explicitly.

    SELECT ... FOR UPDATE is a no-op on SQLite; an engine created with
    ``execution_options={"sqlite_begin": "BEGIN IMMEDIATE"}`` takes the write
    lock up front instead, so concurrent writers queue on the busy timeout.
    """
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", "BEGIN"))


migrate = Migrate()


def create_app(config_name=None, services: WorkflowServices | None = None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        services:    Pre-built collaborators (tests pass fakes here).
                     Built from the configuration when omitted.
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
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_caller_context(app)

    # ── Workflow collaborators ───────────────────────────────────────────
    app.extensions["pkm"] = services or WorkflowServices.from_config(app.config)

    # ── Import all models so Alembic can detect them ─────────────────────
    from pkm_portal.models import audit as _audit_models            # noqa: F401
    from pkm_portal.models import reference as _reference_models    # noqa: F401
    from pkm_portal.models import submission as _submission_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from pkm_portal.blueprints.health_bp import health_bp
    from pkm_portal.blueprints.submission_bp import submission_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(submission_bp)

    logger.debug("Application created config=%s", config_name)
    return app
