"""
SDLC Traceability Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'traceability_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (Flask-Limiter)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # ── Issue tracker (user stories, tasks, test cases) ──────────────────
    JIRA_API_URL = os.getenv("JIRA_API_URL", "")
    JIRA_BASE_URL = os.getenv("JIRA_BASE_URL", "")
    JIRA_API_TOKEN = os.getenv("JIRA_API_TOKEN", "")

    # ── Source-control host (code commits) ───────────────────────────────
    GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
    GITHUB_OWNER = os.getenv("GITHUB_OWNER", "")
    GITHUB_REPO = os.getenv("GITHUB_REPO", "")
    GITHUB_API_TOKEN = os.getenv("GITHUB_API_TOKEN", "")

    # ── Build server (deployments, test results) ─────────────────────────
    JENKINS_API_URL = os.getenv("JENKINS_API_URL", "")
    JENKINS_BASE_URL = os.getenv("JENKINS_BASE_URL", "")
    JENKINS_API_TOKEN = os.getenv("JENKINS_API_TOKEN", "")
    JENKINS_JOB_NAME = os.getenv("JENKINS_JOB_NAME", "")
    JENKINS_TEST_JOB_NAME = os.getenv("JENKINS_TEST_JOB_NAME", "")

    # Any deployment build result other than this one counts as a rollback
    DEPLOYMENT_SUCCESS_RESULT = os.getenv("DEPLOYMENT_SUCCESS_RESULT", "SUCCESS")

    # Aggregation fan-out
    AGGREGATION_MAX_WORKERS = int(os.getenv("AGGREGATION_MAX_WORKERS", "8"))
    INTEGRATION_TIMEOUT = int(os.getenv("INTEGRATION_TIMEOUT", "30"))

    # Optional JSON-lines file for the audit stream (app.audit logger)
    AUDIT_LOG_FILE = os.getenv("AUDIT_LOG_FILE", "")


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
    # In-memory SQLite runs on a StaticPool; pool tuning does not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    RATELIMIT_ENABLED = False

    JIRA_API_URL = "https://jira.test/rest/api/2"
    JIRA_BASE_URL = "https://jira.test"
    GITHUB_API_URL = "https://github.test/api"
    GITHUB_OWNER = "acme"
    GITHUB_REPO = "payments"
    JENKINS_API_URL = "https://jenkins.test"
    JENKINS_BASE_URL = "https://jenkins.test"
    JENKINS_JOB_NAME = "deploy-prod"
    JENKINS_TEST_JOB_NAME = "acceptance-tests"
    AGGREGATION_MAX_WORKERS = 4
    INTEGRATION_TIMEOUT = 1


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Comma-separated; unset means no cross-origin access

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
