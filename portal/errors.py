# portal/errors.py
"""Error types shared by the portal.

Upstream failures carry the raw entitlement-service response so callers can
pull a human readable message out of it with ``parse_display_message``.
"""
from __future__ import annotations

import json
from typing import Any, Iterable


class PortalError(Exception):
    """Base exception for all portal errors."""


class ValidationError(PortalError):
    """A model failed validation. ``errors`` lists every failed rule."""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class CandlepinError(PortalError):
    """The entitlement service rejected a call or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


def _response_text(response: Any) -> str:
    if response is None:
        return ""
    if isinstance(response, bytes):
        return response.decode("utf-8", errors="replace")
    if isinstance(response, str):
        return response
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text
    return str(response)


def parse_display_message(response: Any) -> str:
    """
    Pull the message meant for humans out of an upstream error response.

    Candlepin answers errors with {"displayMessage": "..."}; anything else
    falls back to the raw body.
    """
    text = _response_text(response).strip()
    if not text:
        return ""

    try:
        body = json.loads(text)
    except ValueError:
        return text

    if isinstance(body, dict):
        msg = body.get("displayMessage")
        if msg:
            return str(msg)
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return "\n".join(str(e) for e in errors)
    return text


def error_display_message(error: BaseException) -> str:
    """
    Message extraction for failed write calls:
      1) structured message from the upstream response
      2) the exception's own message
      3) ""
    """
    response = getattr(error, "response", None)
    if response is not None:
        return parse_display_message(response)
    return str(error) if str(error) else ""
