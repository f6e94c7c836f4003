# portal/config.py
from __future__ import annotations

import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Config:
    # =========================================================
    # Core Flask
    # =========================================================
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    if not SQLALCHEMY_DATABASE_URI:
        raise RuntimeError("DATABASE_URL is not set")

    # =========================================================
    # Rate limiting storage (Flask-Limiter)
    # =========================================================
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", True)

    # =========================================================
    # Entitlement service (Candlepin)
    # =========================================================
    CANDLEPIN_URL = os.getenv("CANDLEPIN_URL", "https://localhost:8443/candlepin").rstrip("/")
    CANDLEPIN_USER = os.getenv("CANDLEPIN_USER", "admin").strip()
    CANDLEPIN_PASSWORD = os.getenv("CANDLEPIN_PASSWORD", "").strip()
    CANDLEPIN_TIMEOUT = int(os.getenv("CANDLEPIN_TIMEOUT", "30"))
    CANDLEPIN_VERIFY_SSL = _env_bool("CANDLEPIN_VERIFY_SSL", True)

    # =========================================================
    # Manifest uploads
    # =========================================================
    # Scratch directory for uploaded manifests (removed after import).
    UPLOAD_TMP_DIR = os.getenv("UPLOAD_TMP_DIR", str(PROJECT_ROOT / "tmp"))
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_MANIFEST_BYTES", str(64 * 1024 * 1024)))

    # =========================================================
    # Background jobs
    # =========================================================
    # Run manifest jobs inline instead of on the scheduler thread.
    JOBS_EAGER = _env_bool("JOBS_EAGER", False)
    JOBS_MISFIRE_GRACE_SECONDS = int(os.getenv("JOBS_MISFIRE_GRACE_SECONDS", "300"))

    # =========================================================
    # UI defaults
    # =========================================================
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "25"))

    # =========================================================
    # Logging
    # =========================================================
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    # e.g. "candlepin.client=DEBUG,manifest.jobs=WARNING"
    LOG_LEVELS = os.getenv("LOG_LEVELS", "")
