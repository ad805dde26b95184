"""
Task Tracker application package.

``create_app`` builds the Flask app for one environment: it loads the config
class and JWT public key, binds ``db``, mounts the JSON API under ``/api``
and installs the error handlers that turn lifecycle errors into responses.
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from config import get_config, load_public_key

db = SQLAlchemy()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_SQLITE_PREFIX = "sqlite:///"


def _sqlite_file(database_uri: str) -> Path | None:
    """Return the database file behind a file-based SQLite URI, else None."""
    if not database_uri.startswith(_SQLITE_PREFIX):
        return None
    location = database_uri[len(_SQLITE_PREFIX) :].partition("?")[0]
    if not location or location == ":memory:":
        return None
    return Path(location)


def _init_database(app: Flask) -> None:
    db_file = _sqlite_file(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    from . import models  # noqa: F401

    with app.app_context():
        db.create_all()
    logger.info("Tracker database tables created")


def create_app(config_name: str | None = None) -> Flask:
    """
    Build the tracker application.

    Args:
        config_name: ``"development"``, ``"testing"`` or ``"production"``.
            ``None`` defers to ``FLASK_ENV``.
    """
    config_class = get_config(config_name)
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config["JWT_PUBLIC_KEY"] = load_public_key(testing=app.config.get("TESTING", False))
    logger.info("Creating tracker app with %s", config_class.__name__)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)
    _init_database(app)

    from .routes.api import api_bp, register_error_handlers

    app.register_blueprint(api_bp, url_prefix="/api")
    register_error_handlers(app)
    return app
