# portal/request_cache.py
"""
Request-scoped read-through cache.

Values live on ``flask.g`` and are dropped when the app context tears down,
so nothing derived from the database outlives the request that loaded it.
"""
from __future__ import annotations

from typing import Any, Callable, Hashable, TypeVar

from flask import Flask, g, has_app_context

T = TypeVar("T")

_CACHE_ATTR = "_request_cache"


def _store() -> dict[Hashable, Any]:
    store = g.get(_CACHE_ATTR)
    if store is None:
        store = {}
        setattr(g, _CACHE_ATTR, store)
    return store


def fetch(key: Hashable, loader: Callable[[], T]) -> T:
    """Return the cached value for key, calling loader on first access."""
    if not has_app_context():
        return loader()

    store = _store()
    if key not in store:
        store[key] = loader()
    return store[key]


def discard(key: Hashable) -> None:
    if has_app_context():
        _store().pop(key, None)


def clear() -> None:
    if has_app_context():
        g.pop(_CACHE_ATTR, None)


def init_app(app: Flask) -> None:
    @app.teardown_appcontext
    def _clear_request_cache(_exc=None):
        g.pop(_CACHE_ATTR, None)
