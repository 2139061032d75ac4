# backend/db.py
import logging
import threading

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError

from errors import ProvisioningFailure

db = SQLAlchemy()
log = logging.getLogger(__name__)


def init_db(app) -> bool:
    """Bind the shared db to ``app``.

    Returns False when DATABASE_URL is empty or no engine can be built for
    it (bad URL, missing driver); the app then runs without the table.
    """
    url = app.config.get("DATABASE_URL")
    if not url:
        log.warning("DATABASE_URL not set - relational store disabled")
        return False

    app.config["SQLALCHEMY_DATABASE_URI"] = url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if not url.startswith("sqlite"):
        # Small fixed pool; waiting longer than the connect timeout counts as a failure.
        timeout = int(app.config.get("DB_CONNECT_TIMEOUT", 10))
        options = {
            "pool_size": int(app.config.get("DB_POOL_SIZE", 5)),
            "max_overflow": 0,
            "pool_timeout": timeout,
            "pool_pre_ping": True,
        }
        if url.startswith("mysql"):
            options["connect_args"] = {"connect_timeout": timeout}
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", options)
    try:
        db.init_app(app)
    except (SQLAlchemyError, ImportError) as e:
        # init_app registers itself before building the engine.
        app.extensions.pop("sqlalchemy", None)
        log.error("Failed to create database engine: %s", e)
        log.info("Server will continue without DB.")
        return False
    return True


def is_configured(app) -> bool:
    return "sqlalchemy" in app.extensions


def _create_tables(app) -> None:
    import models  # noqa: F401  registers form_submissions on db.metadata

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            raise ProvisioningFailure(str(e)) from e


def ensure_schema(app) -> bool:
    """Create form_submissions and its indexes if absent. Never raises."""
    if not is_configured(app):
        log.warning("No database configured - skipping DB init")
        return False
    try:
        _create_tables(app)
    except ProvisioningFailure as e:
        log.error("Database connection failed: %s", e)
        log.info("Server will continue without DB.")
        return False
    log.info("Database connected & form_submissions table ready")
    return True


def start_provisioning(app) -> threading.Thread:
    # Must not hold up the server accepting connections.
    t = threading.Thread(
        target=ensure_schema, args=(app,), name="schema-provisioner", daemon=True
    )
    t.start()
    return t
