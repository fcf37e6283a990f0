"""
Shiftbook offline client
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# The local store is always SQLite: one file per installation
_SQLITE_LOCAL = f"sqlite:///{os.path.join(basedir, 'instance', 'shiftbook.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", _SQLITE_LOCAL)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # Remote authority
    SYNC_SERVER_URL = os.getenv("SYNC_SERVER_URL", "http://localhost:3001")
    SYNC_TIMEOUT_SECONDS = int(os.getenv("SYNC_TIMEOUT_SECONDS", "30"))
    SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "2"))

    # CORS (the UI shell is served from a different origin in development)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging (see middleware/logging_config.py)
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")
    LOG_FILE = os.getenv("LOG_FILE")  # relative paths land in the instance folder
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", "1000000"))
    LOG_FILE_BACKUPS = int(os.getenv("LOG_FILE_BACKUPS", "3"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SYNC_SERVER_URL = "http://sync.test"
    SYNC_MAX_RETRIES = 0
    LOG_FILE = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    LOG_FILE = os.getenv("LOG_FILE", "logs/shiftbook.log")

    def __init__(self):
        if not os.getenv("SYNC_SERVER_URL"):
            raise RuntimeError("SYNC_SERVER_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
