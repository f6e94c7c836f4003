# portal/jobs.py
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

log = logging.getLogger("portal.jobs")


class JobQueue:
    """
    Hands long-running entitlement-service calls to a worker thread.

    Each submit() becomes a one-shot APScheduler job that fires immediately.
    The scheduler is only started on first use so CLI commands and
    migrations never spin up a thread.
    """

    def __init__(self) -> None:
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self.eager = False
        self.misfire_grace_time = 300

    def init_app(self, app) -> None:
        self.eager = bool(app.config.get("JOBS_EAGER", False))
        self.misfire_grace_time = int(app.config.get("JOBS_MISFIRE_GRACE_SECONDS", 300))
        app.extensions["jobs"] = self

    def _ensure_started(self) -> BackgroundScheduler:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(timezone="UTC")
            if not self._scheduler.running:
                self._scheduler.start()
                log.info("Job scheduler started")
            return self._scheduler

    def submit(self, func: Callable[..., Any], *, job_id: str | None = None, **kwargs: Any) -> str:
        """Queue func(**kwargs) to run now. Returns the job id."""
        job_id = job_id or f"{func.__name__}-{uuid.uuid4().hex}"

        if self.eager:
            log.info("Running job inline | job_id=%s", job_id)
            func(**kwargs)
            return job_id

        scheduler = self._ensure_started()
        scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
            kwargs=kwargs,
            id=job_id,
            replace_existing=False,
            max_instances=1,
            misfire_grace_time=self.misfire_grace_time,
        )
        log.info("Job queued | job_id=%s func=%s", job_id, func.__name__)
        return job_id

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            if self._scheduler is not None and self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
