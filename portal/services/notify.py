from __future__ import annotations

import logging
from typing import Any, Optional

from flask import has_request_context
from flask_login import current_user

from ..extensions import db

log = logging.getLogger("portal.notify")


def _user_id(user: Any) -> Optional[int]:
    if user is not None:
        return getattr(user, "id", None)
    if has_request_context() and getattr(current_user, "is_authenticated", False):
        return current_user.id
    return None


def _store(level: str, text: str, *, details: str | None, user: Any, asynchronous: bool) -> None:
    """
    Best-effort. Never throws to caller.
    """
    from ..models import Notice

    try:
        db.session.add(
            Notice(
                level=level,
                text=text,
                details=details,
                user_id=_user_id(user),
                asynchronous=asynchronous,
            )
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("Storing notice failed level=%s", level)


def success(text: str, *, user: Any = None, asynchronous: bool = False) -> None:
    log.info("notice success | %s", text)
    _store("success", text, details=None, user=user, asynchronous=asynchronous)


def error(text: str, *, user: Any = None, asynchronous: bool = False, details: str | None = None) -> None:
    log.warning("notice error | %s", text)
    _store("error", text, details=details, user=user, asynchronous=asynchronous)


def exception(text: str, err: BaseException, *, user: Any = None, asynchronous: bool = False) -> None:
    """Error notice that keeps the exception class and message as details."""
    details = f"{type(err).__name__}: {err}"
    log.error("notice exception | %s | %s", text, details)
    _store("error", text, details=details, user=user, asynchronous=asynchronous)
