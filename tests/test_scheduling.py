"""
Tests for core/scheduling.py: single-flight guard, daily due-time math and
the guarded all-users alert batch.
"""

import threading
from datetime import datetime

import pytest

from medkit.core import scheduling
from medkit.core.exceptions import JobAlreadyRunningError
from medkit.core.scheduling import (
    ALERTS_JOB_NAME,
    DailyJobScheduler,
    next_run_after,
    run_alert_batch,
    run_single_flight,
)
from tests.conftest import add_drug_row


class TestNextRunAfter:
    def test_later_today(self):
        assert next_run_after(datetime(2026, 3, 15, 7, 30), 9, 0) == datetime(2026, 3, 15, 9, 0)

    def test_already_passed_rolls_to_tomorrow(self):
        assert next_run_after(datetime(2026, 3, 15, 9, 0), 9, 0) == datetime(2026, 3, 16, 9, 0)

    def test_month_boundary(self):
        assert next_run_after(datetime(2026, 3, 31, 23, 0), 9, 15) == datetime(2026, 4, 1, 9, 15)


class TestSingleFlight:
    def test_runs_when_idle(self):
        ran = []
        assert run_single_flight("test-idle", lambda: ran.append(1)) is True
        assert ran == [1]

    def test_overlapping_tick_is_skipped(self):
        started = threading.Event()
        release = threading.Event()
        runs = []

        def slow_job():
            runs.append("slow")
            started.set()
            release.wait(5)

        worker = threading.Thread(target=run_single_flight, args=("test-overlap", slow_job))
        worker.start()
        try:
            assert started.wait(5)
            assert run_single_flight("test-overlap", lambda: runs.append("second")) is False
        finally:
            release.set()
            worker.join(5)

        assert runs == ["slow"]
        assert run_single_flight("test-overlap", lambda: runs.append("third")) is True

    def test_lock_released_after_failure(self):
        def boom():
            raise RuntimeError("job failed")

        scheduler = DailyJobScheduler("test-failure", boom, hour=9)
        assert scheduler.tick() is False
        assert run_single_flight("test-failure", lambda: None) is True

    def test_memory_backend_uses_no_distributed_lock(self):
        assert scheduling._distributed_lock("anything") is None


class TestDailyJobScheduler:
    def test_start_and_stop(self):
        scheduler = DailyJobScheduler("test-lifecycle", lambda: None, hour=3,
                                      clock=lambda: datetime(2026, 3, 15, 10, 0))
        scheduler.start()
        assert scheduler._thread is not None and scheduler._thread.is_alive()
        scheduler.stop(timeout=2)
        assert scheduler._thread is None

    def test_tick_runs_job(self):
        ran = []
        scheduler = DailyJobScheduler("test-tick", lambda: ran.append(True), hour=9)
        assert scheduler.tick() is True
        assert ran == [True]


class TestRunAlertBatch:
    def test_runs_batch_when_idle(self, db, cache, alice, sender):
        add_drug_row(db, alice, "Overdue", datetime(2025, 1, 31))

        summary = run_alert_batch(db, cache, sender=sender)

        assert summary.owners_notified == 1
        assert [m["to"] for m in sender.sent] == ["alice@example.com"]

    def test_refuses_to_overlap_a_running_batch(self, db, cache, alice, sender):
        add_drug_row(db, alice, "Overdue", datetime(2025, 1, 31))
        guard = scheduling._local_lock(ALERTS_JOB_NAME)

        assert guard.acquire(blocking=False)
        try:
            with pytest.raises(JobAlreadyRunningError, match="already in progress"):
                run_alert_batch(db, cache, sender=sender)
        finally:
            guard.release()

        assert sender.attempts == []
