"""
Tenant Integrity Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Tenancy remediation flags are read once here; services receive them through
``TenancySettings.from_config(app.config)`` and never touch the environment.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'tenant_integrity_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Tenancy remediation
    QUARANTINE_TENANT_SLUG = os.getenv("QUARANTINE_TENANT_SLUG", "quarantine")
    QUARANTINE_TENANT_NAME = os.getenv("QUARANTINE_TENANT_NAME", "Quarantine")
    TENANCY_ENFORCEMENT = os.getenv("TENANCY_ENFORCEMENT", "soft")  # off | soft | strict
    SUPER_DEBUG_DELETE_ALLOWED = _env_flag("SUPER_DEBUG_DELETE_ALLOWED")
    SUPER_DEBUG_ACTIONS_ALLOWED = _env_flag("SUPER_DEBUG_ACTIONS_ALLOWED")
    BACKFILL_TENANT_IDS_ALLOWED = _env_flag("BACKFILL_TENANT_IDS_ALLOWED")
    TENANCY_SAMPLE_LIMIT = int(os.getenv("TENANCY_SAMPLE_LIMIT", "5"))
    TENANCY_PAGE_SIZE = int(os.getenv("TENANCY_PAGE_SIZE", "20"))
    TENANCY_MAX_PAGE_SIZE = int(os.getenv("TENANCY_MAX_PAGE_SIZE", "100"))
    TENANCY_UPDATE_CHUNK_SIZE = int(os.getenv("TENANCY_UPDATE_CHUNK_SIZE", "500"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )
    # Repair actions are on by default locally; production must opt in
    SUPER_DEBUG_ACTIONS_ALLOWED = _env_flag("SUPER_DEBUG_ACTIONS_ALLOWED", "true")
    BACKFILL_TENANT_IDS_ALLOWED = _env_flag("BACKFILL_TENANT_IDS_ALLOWED", "true")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    QUARANTINE_TENANT_SLUG = "quarantine"
    TENANCY_ENFORCEMENT = "soft"
    SUPER_DEBUG_DELETE_ALLOWED = True
    SUPER_DEBUG_ACTIONS_ALLOWED = True
    BACKFILL_TENANT_IDS_ALLOWED = True
    TENANCY_SAMPLE_LIMIT = 5
    TENANCY_PAGE_SIZE = 20
    TENANCY_MAX_PAGE_SIZE = 100
    TENANCY_UPDATE_CHUNK_SIZE = 500


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
