# backend/invencea/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> set[str]:
    raw = os.environ.get(name, default)
    return {part.strip() for part in raw.split(",") if part.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/invencea.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///invencea.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens. JWT_SECRET falls back to SECRET_KEY when unset.
    JWT_SECRET = os.environ.get("JWT_SECRET")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

    # One active session per user; rows older than this are purged on next login
    ACTIVE_SESSION_TTL_HOURS = float(os.environ.get("ACTIVE_SESSION_TTL_HOURS", "8"))

    # Shared secret for kiosk scan-login (x-scan-secret header). None = not enforced.
    SCAN_SECRET = os.environ.get("SCAN_SECRET") or None

    CORS_ALLOWED_ORIGINS = _csv_env(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )

    # Report date filters ("from"/"to" as YYYY-MM-DD) are local calendar days
    REPORT_TIMEZONE = os.environ.get("REPORT_TIMEZONE", "Asia/Manila")

    BORROW_LIST_DEFAULT_LIMIT = 200
    BORROW_LIST_MAX_LIMIT = 2000

    # Stock-moving operations replay on write conflicts (lock timeouts, stale version_id)
    ATOMIC_RETRY_ATTEMPTS = int(os.environ.get("ATOMIC_RETRY_ATTEMPTS", "3"))
    ATOMIC_RETRY_BACKOFF_SECONDS = float(os.environ.get("ATOMIC_RETRY_BACKOFF_SECONDS", "0.1"))
