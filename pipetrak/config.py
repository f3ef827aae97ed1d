"""
PipeTrak configuration classes.

Selected by the factory from APP_ENV:
    app.config.from_object(config[os.getenv("APP_ENV", "development")])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'pipetrak_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(default: str | None) -> str | None:
    """DATABASE_URL with Heroku-style postgres:// rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # Logging: LOG_FORMAT "json" | "readable"; empty picks by environment
    LOG_LEVEL = os.getenv("LOG_LEVEL", "")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "")
    SLOW_REQUEST_MS = _int_env("SLOW_REQUEST_MS", 1000)

    # ── Progress engine ──────────────────────────────────────────────────
    # Repairs allowed below one original weld before engineering review.
    REPAIR_CHAIN_MAX_DEPTH = _int_env("REPAIR_CHAIN_MAX_DEPTH", 10)

    # "lazy": writes mark rollups stale and reads recompute.
    # "eager": rollups are recomputed after every committed write.
    ROLLUP_REFRESH_MODE = os.getenv("ROLLUP_REFRESH_MODE", "lazy")

    IMPORT_BATCH_SIZE = _int_env("IMPORT_BATCH_SIZE", 100)
    IMPORT_MAX_ROWS = _int_env("IMPORT_MAX_ROWS", 5000)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    ROLLUP_REFRESH_MODE = "lazy"


class ProductionConfig(Config):
    """PostgreSQL only; fails at startup without DATABASE_URL and SECRET_KEY."""

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    # A component row lock held too long fails the waiting update fast.
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "connect_args": {
            "options": "-c statement_timeout=30000 -c lock_timeout=5000",
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
