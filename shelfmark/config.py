import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'shelfmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    CONTENT_FETCH_TIMEOUT = float(os.environ.get("CONTENT_FETCH_TIMEOUT", "10"))
    CONTENT_MAX_BYTES = int(os.environ.get("CONTENT_MAX_BYTES", "2500000"))
    FAVICON_TIMEOUT = float(os.environ.get("FAVICON_TIMEOUT", "15"))
    WEBDAV_TIMEOUT = float(os.environ.get("WEBDAV_TIMEOUT", "30"))
    AUTO_BACKUP_INTERVAL_MINUTES = int(
        os.environ.get("AUTO_BACKUP_INTERVAL_MINUTES", "1440")
    )
    CLEAR_CONFIRM_TTL_SECONDS = int(os.environ.get("CLEAR_CONFIRM_TTL_SECONDS", "300"))
    ALLOW_REGISTRATION = os.environ.get("ALLOW_REGISTRATION", "1") == "1"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    LOG_LEVEL = "DEBUG"
