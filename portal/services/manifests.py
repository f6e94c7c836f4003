# portal/services/manifests.py
"""
Manifest import/delete jobs and import-history lookups.

Requests only create a TaskStatus and queue a job; the job talks to the
entitlement service, records the outcome on the task and posts a notice.
The import history from the service is the source of truth for callers.
"""
from __future__ import annotations

import contextlib
import logging
import os
import secrets
import shutil
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional

from flask import current_app, has_app_context

from ..errors import error_display_message
from ..extensions import db, jobs
from ..models import Provider, TaskStatus, User, _safe_commit
from . import candlepin
from . import notify as notifier

log = logging.getLogger("manifest.jobs")


# =========================================================
# Import history
# =========================================================
@dataclass
class HistoryResult:
    """
    Outcome of an import-history lookup.

    suppressed=True means the lookup failed and the caller asked for the
    failure to be swallowed; statuses is then empty.
    """
    statuses: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[BaseException] = None
    suppressed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def fetch_import_history(provider: Provider, *, quiet: bool) -> HistoryResult:
    """
    quiet=True  -> page loads: failures are swallowed.
    quiet=False -> refresh polling: failures are returned for the caller to report.
    """
    try:
        statuses = provider.owner_imports() or []
    except Exception as e:
        if quiet:
            log.debug("Import history unavailable (suppressed) provider_id=%s err=%s", provider.id, e)
            return HistoryResult(statuses=[], error=e, suppressed=True)
        return HistoryResult(statuses=[], error=e, suppressed=False)
    return HistoryResult(statuses=list(statuses))


def web_app_prefix(statuses: List[Dict[str, Any]], upstream_uuid: str) -> Optional[str]:
    """Owner details lack webAppPrefix; recover it from the matching import record."""
    for s in statuses:
        if s.get("webAppPrefix") and s.get("upstreamId") == upstream_uuid:
            return s["webAppPrefix"]
    return None


def should_open_new_panel(details: Dict[str, Any], task: Optional[TaskStatus]) -> bool:
    """
    Default the subscriptions page to the import panel when no manifest has
    been imported yet (no upstream identity) or an import is still running.
    """
    if not details.get("upstreamUuid"):
        return True
    return task is not None and not task.finish_time


# =========================================================
# Scratch file handling
# =========================================================
def scratch_dir() -> str:
    path = current_app.config.get("UPLOAD_TMP_DIR") or os.path.join(current_app.root_path, "..", "tmp")
    os.makedirs(path, exist_ok=True)
    return path


def create_scratch_file(prefix: str, stream: BinaryIO) -> str:
    """
    Copy an upload into a private scratch file and return its absolute path.

    Exclusive create with mode 0600; the random suffix keeps concurrent
    uploads apart.
    """
    path = os.path.abspath(os.path.join(scratch_dir(), f"{prefix}_{secrets.token_hex(8)}.zip"))
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0), 0o600)
    try:
        with os.fdopen(fd, "wb") as fh:
            shutil.copyfileobj(stream, fh)
    except BaseException:
        # the caller never learns the path of a partial copy
        remove_scratch_file(path)
        raise
    return path


def remove_scratch_file(path: str | None) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        log.exception("Failed removing manifest scratch file path=%s", path)


@contextlib.contextmanager
def _job_context(app):
    # Inline (eager) jobs already run inside the caller's app context.
    if has_app_context() and current_app._get_current_object() is app:
        yield
    else:
        with app.app_context():
            yield


# =========================================================
# Import
# =========================================================
def submit_manifest_import(task: TaskStatus, *, path: str, force: bool, notify: bool) -> str:
    return jobs.submit(
        run_manifest_import,
        job_id=f"manifest-import-{task.uuid}",
        app=current_app._get_current_object(),
        task_id=task.id,
        path=path,
        force=force,
        notify=notify,
    )


def run_manifest_import(app, task_id: int, path: str, force: bool, notify: bool) -> None:
    with _job_context(app):
        perform_manifest_import(task_id, path=path, force=force, notify=notify)


def perform_manifest_import(task_id: int, *, path: str, force: bool, notify: bool) -> None:
    """Import the scratch file into the entitlement service. Always removes the file."""
    task = db.session.get(TaskStatus, task_id)
    if task is None:
        log.error("Manifest import task missing task_id=%s", task_id)
        remove_scratch_file(path)
        return

    provider = task.provider
    user_id = task.user_id
    try:
        task.start()
        _safe_commit()

        result = candlepin.get_client().import_manifest(
            provider.organization.candlepin_owner_key, path, force=force
        )

        task.finish(result)
        _safe_commit()
        log.info("Manifest import finished task_id=%s provider_id=%s", task_id, provider.id)

        if notify:
            notify_user = _notice_user(user_id)
            notifier.success(provider.import_success_message(), user=notify_user, asynchronous=True)
    except Exception as e:
        db.session.rollback()
        message = error_display_message(e)
        log.exception("Manifest import failed task_id=%s provider_id=%s", task_id, provider.id)
        _mark_failed(task_id, message)
        if notify:
            notifier.exception(provider.import_error_message(message), e, user=_notice_user(user_id), asynchronous=True)
    finally:
        remove_scratch_file(path)


# =========================================================
# Delete
# =========================================================
def submit_manifest_delete(task: TaskStatus, *, notify: bool) -> str:
    return jobs.submit(
        run_manifest_delete,
        job_id=f"manifest-delete-{task.uuid}",
        app=current_app._get_current_object(),
        task_id=task.id,
        notify=notify,
    )


def run_manifest_delete(app, task_id: int, notify: bool) -> None:
    with _job_context(app):
        perform_manifest_delete(task_id, notify=notify)


def perform_manifest_delete(task_id: int, *, notify: bool) -> None:
    task = db.session.get(TaskStatus, task_id)
    if task is None:
        log.error("Manifest delete task missing task_id=%s", task_id)
        return

    provider = task.provider
    user_id = task.user_id
    try:
        task.start()
        _safe_commit()

        result = candlepin.get_client().delete_manifest(provider.organization.candlepin_owner_key)

        task.finish(result)
        _safe_commit()
        log.info("Manifest delete finished task_id=%s provider_id=%s", task_id, provider.id)

        if notify:
            notifier.success(provider.delete_success_message(), user=_notice_user(user_id), asynchronous=True)
    except Exception as e:
        db.session.rollback()
        message = error_display_message(e)
        log.exception("Manifest delete failed task_id=%s provider_id=%s", task_id, provider.id)
        _mark_failed(task_id, message)
        if notify:
            notifier.exception(provider.delete_error_message(message), e, user=_notice_user(user_id), asynchronous=True)


# =========================================================
# Helpers
# =========================================================
def _mark_failed(task_id: int, message: str) -> None:
    task = db.session.get(TaskStatus, task_id)
    if task is None:
        return
    task.fail(message)
    try:
        _safe_commit()
    except Exception:
        log.exception("Failed recording task failure task_id=%s", task_id)


def _notice_user(user_id: Optional[int]):
    return db.session.get(User, user_id) if user_id else None
