"""
Configuration for the Task Tracker.

Settings come from environment variables with development-friendly
defaults. ``Config`` holds the shared values; the per-environment
subclasses only override what differs, and ``get_config`` picks one by name.
"""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _read_pem(prefix: str) -> str | None:
    """
    Read a PEM key from ``<prefix>`` (inline) or ``<prefix>_PATH`` (file).

    Returns None when neither variable is set.
    """
    inline = os.environ.get(prefix, "").strip()
    if inline:
        return inline

    path = os.environ.get(f"{prefix}_PATH", "").strip()
    if not path:
        return None
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"{prefix}_PATH points at an unreadable file: {path}") from exc


def load_public_key(*, testing: bool) -> str:
    """
    Return the PEM public key bearer tokens are verified against.

    Test runs look at ``TEST_JWT_PUBLIC_KEY`` first so a suite can inject
    its own key pair.
    """
    prefixes = ["TEST_JWT_PUBLIC_KEY", "JWT_PUBLIC_KEY"] if testing else ["JWT_PUBLIC_KEY"]
    for prefix in prefixes:
        key = _read_pem(prefix)
        if key is not None:
            return key
    raise RuntimeError("No JWT public key configured: set JWT_PUBLIC_KEY or JWT_PUBLIC_KEY_PATH.")


class Config:
    """
    Settings shared by every environment.

    Attributes:
        SECRET_KEY: Flask session signing key.
        SQLALCHEMY_TRACK_MODIFICATIONS: Off; the tracker uses no signals.
        SQLALCHEMY_DATABASE_URI: Database connection string (default: local
            SQLite file).
        JWT_CLOCK_SKEW_SECONDS: Allowed clock drift (in seconds) when
            validating JWT ``exp`` / ``iat`` claims.
        STRICT_STATUS_TRANSITIONS: When true, status changes are checked
            against the allowed-transition table instead of accepting any
            status from any status.
        TASK_NUMBER_MAX_RETRIES: How many times a create/copy/move is
            retried after losing a task-number race.
        ACTIVITY_LOG_DEFAULT_LIMIT: Entries returned by the activity feed
            when the client does not ask for a specific number.
    """

    SECRET_KEY: str = os.environ.get(
        "SECRET_KEY", "tracker-dev-secret-change-in-production"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'instance' / 'tracker.db'}",
    )

    JWT_CLOCK_SKEW_SECONDS: int = int(os.environ.get("JWT_CLOCK_SKEW_SECONDS", "30"))

    STRICT_STATUS_TRANSITIONS: bool = _env_flag("STRICT_STATUS_TRANSITIONS")
    TASK_NUMBER_MAX_RETRIES: int = int(os.environ.get("TASK_NUMBER_MAX_RETRIES", "3"))
    ACTIVITY_LOG_DEFAULT_LIMIT: int = int(os.environ.get("ACTIVITY_LOG_DEFAULT_LIMIT", "20"))


class DevelopmentConfig(Config):
    """Local development: debug on."""

    DEBUG: bool = True
    TESTING: bool = False


class TestingConfig(Config):
    """
    Test runs: a separate SQLite file and permissive transitions,
    whatever the environment says.
    """

    DEBUG: bool = True
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "TEST_DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'instance' / 'test_tracker.db'}?check_same_thread=False",
    )
    SQLALCHEMY_ENGINE_OPTIONS: dict = {"pool_pre_ping": True}
    STRICT_STATUS_TRANSITIONS: bool = False


class ProductionConfig(Config):
    """
    Production: debug off. ``SECRET_KEY``, ``DATABASE_URL`` and the JWT
    public key are expected from the environment.
    """

    DEBUG: bool = False
    TESTING: bool = False


config: dict[str, type[Config]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """Return the config class for ``env`` (or ``FLASK_ENV``); unknown names get development."""
    name = env or os.environ.get("FLASK_ENV", "development")
    return config.get(name, DevelopmentConfig)
