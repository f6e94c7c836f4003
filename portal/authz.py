from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import abort, g
from flask_login import current_user, login_required

from .models import Provider

# Capability required by each subscriptions action. "edit" on the
# right-hand panel callback only opens a read-only view.
SUBSCRIPTION_RULES: dict[str, str] = {
    "index": "read",
    "items": "read",
    "show": "read",
    "edit": "read",
    "products": "read",
    "consumers": "read",
    "history": "read",
    "history_items": "read",
    "new": "read",
    "upload": "edit",
    "delete_manifest": "edit",
}

CAPABILITY_CHECKS: dict[str, Callable[[Provider, object], bool]] = {
    "read": lambda provider, user: provider.readable(user),
    "edit": lambda provider, user: provider.editable(user),
}


def provider_permission_required(action: str):
    """
    Check the capability mapped to action against current_user and the
    provider loaded into g.provider, before the view runs.
    """
    capability = SUBSCRIPTION_RULES[action]
    check = CAPABILITY_CHECKS[capability]

    def decorator(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if hasattr(current_user, "is_active") and not current_user.is_active:
                abort(403)
            provider = g.get("provider")
            if provider is None:
                abort(404)
            if check(provider, current_user):
                return fn(*args, **kwargs)
            abort(403)
        return wrapper
    return decorator
