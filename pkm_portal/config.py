"""
PKM Submission Portal
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'pkm_portal_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(raw: str) -> str:
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


class Config:
    """Base configuration shared across all environments."""

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

    # Submission codes: PKM-{CATEGORY}-{YEAR}-{SEQ}
    SUBMISSION_CODE_PREFIX = os.getenv("SUBMISSION_CODE_PREFIX", "PKM")
    CODE_GENERATOR_MAX_ATTEMPTS = int(os.getenv("CODE_GENERATOR_MAX_ATTEMPTS", "5"))

    # External identity directories (read-only)
    STUDENT_DIRECTORY_URL = os.getenv("STUDENT_DIRECTORY_URL", "")
    STAFF_DIRECTORY_URL = os.getenv("STAFF_DIRECTORY_URL", "")
    ORG_UNIT_DIRECTORY_URL = os.getenv("ORG_UNIT_DIRECTORY_URL", "")
    DIRECTORY_API_KEY = os.getenv("DIRECTORY_API_KEY")
    DIRECTORY_TIMEOUT_SECONDS = float(os.getenv("DIRECTORY_TIMEOUT_SECONDS", "5"))
    DIRECTORY_RETRY_MAX = int(os.getenv("DIRECTORY_RETRY_MAX", "1"))

    # Proposal documents
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(basedir, "uploads", "proposals"))
    MAX_PROPOSAL_BYTES = int(os.getenv("MAX_PROPOSAL_BYTES", str(int(2.5 * 1024 * 1024))))
    ALLOWED_PROPOSAL_EXTENSIONS = os.getenv("ALLOWED_PROPOSAL_EXTENSIONS", "pdf,doc,docx")
    # Multipart overhead on top of the document itself
    MAX_CONTENT_LENGTH = MAX_PROPOSAL_BYTES + 64 * 1024


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    # Tests inject fake directories; nothing may reach the network
    STUDENT_DIRECTORY_URL = ""
    STAFF_DIRECTORY_URL = ""
    ORG_UNIT_DIRECTORY_URL = ""
    DIRECTORY_RETRY_MAX = 0


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url(os.getenv("DATABASE_URL", "")) or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL pool sizing and statement timeout
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


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
