# backend/consign/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/consign.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///consign.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secret for the external cron trigger (POST /api/cron/cutoff)
    CRON_SECRET = os.environ.get("CRON_SECRET", "dev-cron-secret")

    # In-process cutoff sweep (APScheduler). Off unless explicitly enabled.
    ENABLE_BACKGROUND_JOBS = _env_bool("ENABLE_BACKGROUND_JOBS")
    CUTOFF_SWEEP_INTERVAL_MINUTES = int(os.environ.get("CUTOFF_SWEEP_INTERVAL_MINUTES", "5"))
    CUTOFF_WARNING_MINUTES = int(os.environ.get("CUTOFF_WARNING_MINUTES", "30"))

    # New stores get this timezone unless one is given
    DEFAULT_STORE_TIMEZONE = os.environ.get("DEFAULT_STORE_TIMEZONE", "Asia/Jakarta")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Health reports audit "degraded" while the last dropped write is this recent
    AUDIT_DEGRADED_WINDOW_MINUTES = int(os.environ.get("AUDIT_DEGRADED_WINDOW_MINUTES", "15"))

    # Attempts for run_with_retry on lock/version conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
