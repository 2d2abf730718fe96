# medkit/core/scheduling.py
"""
Daily job runner for the expiry alert batch.

A tick runs through run_single_flight(): a per-job-name process lock, plus a
Redis lock when the Redis cache backend is configured so several workers or
hosts never run the same job at once. A tick that finds the job already
running is skipped, not queued.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Optional

import redis
from sqlalchemy.orm import Session

from medkit.core.config import settings
from medkit.core.emailer import EmailSender, send_email
from medkit.core.exceptions import JobAlreadyRunningError
from medkit.db.session import SessionLocal
from medkit.schemas.drug import AlertRunSummary
from medkit.services.cache import DrugCache, get_drug_cache
from medkit.services.drugs import send_expiry_alerts_for_all_users
from medkit.utils.timezone import now_local

logger = logging.getLogger(__name__)

ALERTS_JOB_NAME = "drug-expiry-alerts"

_job_locks: Dict[str, threading.Lock] = {}
_job_locks_guard = threading.Lock()
_redis_client: Optional[redis.Redis] = None


def _local_lock(job_name: str) -> threading.Lock:
    with _job_locks_guard:
        lock = _job_locks.get(job_name)
        if lock is None:
            lock = threading.Lock()
            _job_locks[job_name] = lock
        return lock


def _distributed_lock(job_name: str):
    global _redis_client
    if settings.CACHE_BACKEND != "redis":
        return None
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(
            settings.REDIS_URL,
            socket_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_client.lock(f"medkit:job:{job_name}",
                              timeout=settings.ALERTS_JOB_LOCK_SECONDS,
                              blocking=False)


def run_single_flight(job_name: str,
                      fn: Callable[[], Any],
                      distributed: bool = True) -> bool:
    """
    Run `fn` unless another run of `job_name` holds the guard.
    Returns True when `fn` ran, False when the tick was skipped.
    """
    local = _local_lock(job_name)
    if not local.acquire(blocking=False):
        logger.warning("Job %s is still running in this process; skipping tick", job_name)
        return False

    try:
        remote = _distributed_lock(job_name) if distributed else None
        if remote is not None:
            try:
                acquired = remote.acquire(blocking=False)
            except redis.RedisError as e:
                # cannot prove nobody else is running: do not run
                logger.error("Job %s lock unavailable (%s); skipping tick", job_name, e)
                return False
            if not acquired:
                logger.warning("Job %s is running on another worker; skipping tick", job_name)
                return False
            try:
                fn()
            finally:
                try:
                    remote.release()
                except redis.RedisError as e:
                    logger.warning("Job %s lock release failed: %s", job_name, e)
            return True

        fn()
        return True
    finally:
        local.release()


def next_run_after(moment: datetime, hour: int, minute: int) -> datetime:
    candidate = datetime.combine(moment.date(), time(hour, minute))
    if candidate <= moment:
        candidate += timedelta(days=1)
    return candidate


class DailyJobScheduler:
    """Fires `job` once a day at hour:minute local time on a daemon thread."""

    def __init__(self,
                 job_name: str,
                 job: Callable[[], Any],
                 hour: int,
                 minute: int = 0,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.job_name = job_name
        self.job = job
        self.hour = hour
        self.minute = minute
        self.clock = clock or now_local
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop,
                                        name=f"scheduler-{self.job_name}",
                                        daemon=True)
        self._thread.start()
        logger.info("Scheduler %s started (daily at %02d:%02d)",
                    self.job_name, self.hour, self.minute)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def tick(self) -> bool:
        try:
            return run_single_flight(self.job_name, self.job)
        except Exception:
            logger.exception("Scheduled job %s failed", self.job_name)
            return False

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = self.clock()
            due = next_run_after(now, self.hour, self.minute)
            wait = max((due - now).total_seconds(), 0.0)
            if self._stop.wait(wait):
                break
            logger.info("Scheduler: running %s", self.job_name)
            self.tick()


def run_alert_batch(db: Session,
                    cache: DrugCache,
                    horizon_days: Optional[int] = None,
                    sender: EmailSender = send_email) -> AlertRunSummary:
    """
    All-users alert run under the same guard as the daily tick.
    Raises JobAlreadyRunningError instead of overlapping a run in progress.
    """
    result: Dict[str, AlertRunSummary] = {}

    def job() -> None:
        result["summary"] = send_expiry_alerts_for_all_users(
            db, cache, horizon_days=horizon_days, sender=sender)

    if not run_single_flight(ALERTS_JOB_NAME, job):
        raise JobAlreadyRunningError("Expiry alert run is already in progress")
    return result["summary"]


def run_expiry_alert_job() -> None:
    """One scheduled alert run with its own session."""
    db = SessionLocal()
    try:
        send_expiry_alerts_for_all_users(db, get_drug_cache())
    finally:
        db.close()


def build_alert_scheduler() -> DailyJobScheduler:
    return DailyJobScheduler(
        ALERTS_JOB_NAME,
        run_expiry_alert_job,
        hour=settings.ALERTS_SCHEDULE_HOUR,
        minute=settings.ALERTS_SCHEDULE_MINUTE,
    )
