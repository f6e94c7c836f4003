# portal/logging.py
from __future__ import annotations

import logging
import sys
from typing import Dict, Mapping, Optional

# Loggers owned by the portal. "portal" is the Flask app logger.
PORTAL_LOGGERS = (
    "portal",
    "portal.jobs",
    "portal.notify",
    "portal.models",
    "candlepin.client",
    "manifest.jobs",
)

QUIET_LOGGERS = {
    "werkzeug": logging.WARNING,
    "apscheduler": logging.INFO,
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
}

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _level(value, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    name = (value or "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def parse_log_levels(raw: Optional[str]) -> Dict[str, int]:
    """
    "candlepin.client=DEBUG, manifest.jobs=WARNING" -> {name: level}.

    Entries without "=" or with an unknown level are skipped.
    """
    levels: Dict[str, int] = {}
    for part in (raw or "").split(","):
        name, sep, value = part.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            levels[name] = level
    return levels


def setup_logging(
    debug: bool = False,
    level: str | int = "INFO",
    overrides: Optional[Mapping[str, int]] = None,
) -> None:
    """
    One stdout handler on the root logger, portal loggers at LOG_LEVEL
    (DEBUG when debug), per-logger LOG_LEVELS overrides applied last.
    """
    base = logging.DEBUG if debug else _level(level)

    logging.basicConfig(
        level=base,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name, quiet in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet)

    for name in PORTAL_LOGGERS:
        logging.getLogger(name).setLevel(base)

    for name, override in (overrides or {}).items():
        logging.getLogger(name).setLevel(override)
