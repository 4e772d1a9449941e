# backend/invoicing/config.py
from __future__ import annotations
import os


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/invoicing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///invoicing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor; tests lower this to keep hashing fast
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "168"))
    SESSION_IDLE_TIMEOUT_HOURS = int(os.environ.get("SESSION_IDLE_TIMEOUT_HOURS", "24"))

    ACTIVITY_LOG_RETENTION_DAYS = int(os.environ.get("ACTIVITY_LOG_RETENTION_DAYS", "90"))

    # Login throttling: per-username lockout plus a per-address ceiling
    LOGIN_MAX_FAILED_ATTEMPTS = int(os.environ.get("LOGIN_MAX_FAILED_ATTEMPTS", "10"))
    LOGIN_MAX_FAILED_PER_IP = int(os.environ.get("LOGIN_MAX_FAILED_PER_IP", "100"))
    LOGIN_LOCKOUT_WINDOW_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_WINDOW_MINUTES", "15"))
    LOGIN_LOCKOUT_DURATION_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_DURATION_MINUTES", "15"))

    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 100

    CORS_ALLOWED_ORIGINS = _csv(os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:8080"))
