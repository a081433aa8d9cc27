"""
Factory Standards Build Tracker
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'buildtrack_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url(default=None):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))
    JWT_REFRESH_EXPIRES = int(os.getenv("JWT_REFRESH_EXPIRES", "604800"))
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Redis (rate limiter storage)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Mailgun (optional; emails are skipped when api key or domain is missing)
    MAILGUN_API_KEY = os.getenv("MAILGUN_API_KEY")
    MAILGUN_DOMAIN = os.getenv("MAILGUN_DOMAIN")
    MAILGUN_FROM_NAME = os.getenv("MAILGUN_FROM_NAME", "Ormsby Guitars")
    MAILGUN_FROM_EMAIL = os.getenv("MAILGUN_FROM_EMAIL")
    MAILGUN_API_HOST = os.getenv("MAILGUN_API_HOST", "https://api.mailgun.net")
    MAILGUN_CC = os.getenv("MAILGUN_CC", "guitars@ormsbyguitars.com")
    MAILGUN_TIMEOUT = int(os.getenv("MAILGUN_TIMEOUT", "15"))
    PORTAL_URL = os.getenv("PORTAL_URL", "")
    LOGO_URL = os.getenv(
        "LOGO_URL",
        "https://ormsbyguitars.com/cdn/shop/files/ormsby-logo-white.png",
    )
    STAFF_EMAIL = os.getenv("STAFF_EMAIL", "guitars@ormsbyguitars.com")

    # Set-password links: https://{AUTH_DOMAIN}/login?mode=setPassword&token=...
    AUTH_DOMAIN = os.getenv("AUTH_DOMAIN", "")
    PASSWORD_RESET_EXPIRES = int(os.getenv("PASSWORD_RESET_EXPIRES", "259200"))  # 3 days

    # File uploads
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(basedir, "instance", "uploads"))
    UPLOAD_URL_PREFIX = "/uploads/"
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_UPLOAD_MB", "10")) * 1024 * 1024

    # Outbox: dispatch side effects right after the request commits
    OUTBOX_DISPATCH_INLINE = os.getenv("OUTBOX_DISPATCH_INLINE", "true").lower() == "true"


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url(_SQLITE_DEV)


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    REDIS_URL = "memory://"

    # Mailgun configured with dummy values; tests swap the HTTP session
    MAILGUN_API_KEY = "key-test"
    MAILGUN_DOMAIN = "mg.test.local"
    PORTAL_URL = "https://portal.test.local"
    AUTH_DOMAIN = "portal.test.local"
    UPLOAD_FOLDER = os.path.join(basedir, "instance", "test_uploads")


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

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
