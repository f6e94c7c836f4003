# portal/__init__.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from flask import Flask, current_app as flask_current_app

from .logging import parse_log_levels, setup_logging


def _load_env() -> None:
    """
    Load .env for LOCAL DEV only, without overriding real environment variables.

    Rule:
    - If DATABASE_URL is already set (CI/migrations/containers), do NOT override it from .env.
    """
    if os.getenv("DATABASE_URL"):
        return

    project_root = Path(__file__).resolve().parent.parent
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    # ---------------------------------------------------------
    # 1) Load env BEFORE importing Config (local dev only)
    # ---------------------------------------------------------
    _load_env()

    # ---------------------------------------------------------
    # 2) Import config AFTER env is loaded
    # ---------------------------------------------------------
    from .config import Config

    # ---------------------------------------------------------
    # 3) Create app
    # ---------------------------------------------------------
    app = Flask(__name__, instance_relative_config=False)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # ---------------------------------------------------------
    # 4) Logging
    # ---------------------------------------------------------
    setup_logging(
        debug=bool(app.config.get("DEBUG", False)),
        level=app.config.get("LOG_LEVEL", "INFO"),
        overrides=parse_log_levels(app.config.get("LOG_LEVELS")),
    )

    # ---------------------------------------------------------
    # 5) Extensions
    # ---------------------------------------------------------
    from .extensions import db, jobs, limiter, login_manager, migrate
    from . import request_cache

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    login_manager.init_app(app)
    jobs.init_app(app)
    request_cache.init_app(app)

    # ---------------------------------------------------------
    # 6) Blueprints
    # ---------------------------------------------------------
    from .auth import auth_bp
    from .subscriptions import subscriptions_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(subscriptions_bp, url_prefix="/subscriptions")

    # ---------------------------------------------------------
    # 7) CLI commands (org/user setup, manifest tools)
    # ---------------------------------------------------------
    try:
        from . import cli as cli_module
        if hasattr(cli_module, "init_app"):
            cli_module.init_app(app)
    except Exception:
        # Don't crash app startup due to CLI wiring; log it.
        app.logger.exception("CLI init failed")

    # ---------------------------------------------------------
    # 8) Context processor
    # ---------------------------------------------------------
    @app.context_processor
    def inject_current_app():
        return {"current_app": flask_current_app}

    # ---------------------------------------------------------
    # 9) Health check
    # ---------------------------------------------------------
    @app.get("/_ping")
    def ping():
        return {"service": "entitlement-portal", "status": "running"}

    app.logger.info(
        "App created (candlepin=%s, jobs_eager=%s, upload_tmp_dir=%s).",
        app.config.get("CANDLEPIN_URL"),
        bool(app.config.get("JOBS_EAGER", False)),
        app.config.get("UPLOAD_TMP_DIR"),
    )

    return app
