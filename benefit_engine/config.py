"""
Milestone Benefit Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'benefit_engine_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_list(name, default):
    raw = os.getenv(name)
    if not raw:
        return tuple(default)
    return tuple(v.strip() for v in raw.split(",") if v.strip())


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

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Program rules ────────────────────────────────────────────────────
    PROGRAM_LAUNCH_YEAR = int(os.getenv("PROGRAM_LAUNCH_YEAR", "2024"))
    MAX_PROGRAM_YEAR = int(os.getenv("MAX_PROGRAM_YEAR", "2100"))
    ELIGIBILITY_MAX_AGE = int(os.getenv("ELIGIBILITY_MAX_AGE", "130"))
    # benefit_code -> amount string, e.g. {"centenarian_100": "150000.00"}
    MILESTONE_AMOUNTS = {}
    # Registry statuses that keep a beneficiary out of batch generation
    DISQUALIFYING_REGISTRY_STATUSES = _env_list(
        "DISQUALIFYING_REGISTRY_STATUSES", ("Waitlisted", "Compliance", "Disqualified"),
    )

    # ── Batch generation ─────────────────────────────────────────────────
    GENERATION_PAGE_SIZE = int(os.getenv("GENERATION_PAGE_SIZE", "500"))

    # ── Storage retry (tenacity) ─────────────────────────────────────────
    STORE_RETRY_ATTEMPTS = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))
    STORE_RETRY_BASE_DELAY = float(os.getenv("STORE_RETRY_BASE_DELAY", "0.5"))
    STORE_RETRY_MAX_DELAY = float(os.getenv("STORE_RETRY_MAX_DELAY", "8.0"))

    # Conditional status UPDATE re-validation bound
    STATUS_UPDATE_ATTEMPTS = int(os.getenv("STATUS_UPDATE_ATTEMPTS", "3"))

    # ── Audit dispatch ───────────────────────────────────────────────────
    AUDIT_RETRY_ATTEMPTS = int(os.getenv("AUDIT_RETRY_ATTEMPTS", "5"))
    AUDIT_RETRY_INTERVAL = float(os.getenv("AUDIT_RETRY_INTERVAL", "30"))
    AUDIT_RETRY_BACKGROUND = True


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False

    GENERATION_PAGE_SIZE = 3
    STORE_RETRY_BASE_DELAY = 0
    STORE_RETRY_MAX_DELAY = 0
    AUDIT_RETRY_BACKGROUND = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

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
