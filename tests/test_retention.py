"""
Retention policy engine - age cutoff, count cap, scheduling and shutdown order.
"""

import logging
import threading
import time
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from src.core.config import StoreConfig
from src.core.dao import init_store, shutdown_store
from src.core.retention import RetentionScheduler, run_cleanup
from src.core.schema import CleanupReport

T = datetime(2026, 6, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def wait_for(condition, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def make_store(tmp_path, clock, **overrides):
    settings = dict(
        db_path=str(tmp_path / "retention.db"),
        max_records=100,
        max_age_minutes=30,
        cleanup_interval_ms=60000,
    )
    settings.update(overrides)
    return init_store(StoreConfig(**settings), clock=clock, start_timer=False)


def add_at(store, clock, run_key, when):
    clock.now = when
    store.create_or_append(run_key, {"at": when.isoformat()})


class TestCleanupPolicy:
    """Age cutoff first, then count cap."""

    def test_age_cutoff(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock)
        try:
            add_at(store, clock, "old", T - timedelta(minutes=40))
            add_at(store, clock, "recent", T - timedelta(minutes=10))
            clock.now = T

            report = store.run_cleanup_now()

            assert report.deleted_by_age == 1
            assert report.deleted_by_count == 0
            assert report.total_deleted == 1
            assert report.remaining_records == 1
            assert store.get("old") is None
            assert store.get("recent") is not None
        finally:
            store.shutdown()

    def test_count_cap_removes_oldest(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock, max_records=3)
        try:
            for i in range(5):
                add_at(store, clock, f"run-{i}", T - timedelta(minutes=10 - i))
            clock.now = T

            report = store.run_cleanup_now()

            assert report.deleted_by_age == 0
            assert report.deleted_by_count == 2
            assert report.remaining_records == 3
            assert store.get("run-0") is None
            assert store.get("run-1") is None
            assert [store.get(f"run-{i}") is not None for i in (2, 3, 4)] == [True, True, True]
        finally:
            store.shutdown()

    def test_over_age_records_are_not_double_counted(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock, max_records=2)
        try:
            add_at(store, clock, "expired-1", T - timedelta(minutes=45))
            add_at(store, clock, "expired-2", T - timedelta(minutes=35))
            for i in range(3):
                add_at(store, clock, f"fresh-{i}", T - timedelta(minutes=5 - i))
            clock.now = T

            report = store.run_cleanup_now()

            assert report.to_dict() == {
                "deletedByAge": 2,
                "deletedByCount": 1,
                "totalDeleted": 3,
                "remainingRecords": 2,
            }
            assert store.get("fresh-0") is None
        finally:
            store.shutdown()

    def test_cleanup_is_idempotent(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock, max_records=2)
        try:
            add_at(store, clock, "expired", T - timedelta(minutes=31))
            for i in range(4):
                add_at(store, clock, f"fresh-{i}", T - timedelta(minutes=4 - i))
            clock.now = T

            first = store.run_cleanup_now()
            second = store.run_cleanup_now()

            assert first.total_deleted == 3
            assert second.total_deleted == 0
            assert second.remaining_records == 2
        finally:
            store.shutdown()

    def test_empty_store_is_a_silent_no_op(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock)
        try:
            report = store.run_cleanup_now()
            assert report.to_dict() == {
                "deletedByAge": 0,
                "deletedByCount": 0,
                "totalDeleted": 0,
                "remainingRecords": 0,
            }
        finally:
            store.shutdown()

    def test_run_cleanup_uses_given_reference_time(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock)
        try:
            add_at(store, clock, "a", T)

            kept = run_cleanup(store.table, max_age_minutes=30, max_records=10, now=T + timedelta(minutes=29))
            dropped = run_cleanup(store.table, max_age_minutes=30, max_records=10, now=T + timedelta(minutes=31))

            assert kept.deleted_by_age == 0
            assert dropped.deleted_by_age == 1
            assert dropped.started_at == T + timedelta(minutes=31)
        finally:
            store.shutdown()


class TestStartupAndLogging:

    def test_startup_pass_clears_backlog(self, tmp_path):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock)
        add_at(store, clock, "stale", T)
        store.shutdown()

        later = FakeClock(T + timedelta(hours=2))
        reopened = make_store(tmp_path, later)
        try:
            assert reopened.last_report.deleted_by_age == 1
            assert reopened.get("stale") is None
        finally:
            reopened.shutdown()

    def test_only_non_zero_passes_log_at_info(self, tmp_path, caplog):
        clock = FakeClock(T)
        store = make_store(tmp_path, clock)
        try:
            caplog.set_level(logging.INFO, logger="run_records")
            caplog.clear()

            store.run_cleanup_now()
            assert not [r for r in caplog.records if "retention.cleanup" in r.getMessage()]

            add_at(store, clock, "old", T - timedelta(hours=1))
            clock.now = T
            store.run_cleanup_now()

            messages = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
            assert any("retention.cleanup" in m and "'totalDeleted': 1" in m for m in messages)
        finally:
            store.shutdown()


class TestRetentionScheduler:

    def test_rejects_bad_arguments(self):
        with pytest.raises(ValueError, match="callable"):
            RetentionScheduler("not_callable", 1)
        with pytest.raises(ValueError, match="Interval"):
            RetentionScheduler(lambda: None, 0)

    def test_runs_on_interval_until_stopped(self):
        calls = []
        scheduler = RetentionScheduler(lambda: calls.append(1), 0.02)

        scheduler.start()
        try:
            assert scheduler.is_running
            assert wait_for(lambda: len(calls) >= 3)
        finally:
            scheduler.stop()

        assert not scheduler.is_running
        count = len(calls)
        time.sleep(0.1)
        assert len(calls) == count
        assert scheduler.get_status()["status"] == "stopped"

    def test_start_twice_raises(self):
        scheduler = RetentionScheduler(lambda: None, 10)
        scheduler.start()
        try:
            with pytest.raises(RuntimeError, match="already running"):
                scheduler.start()
        finally:
            scheduler.stop()

    def test_stop_is_idempotent(self):
        scheduler = RetentionScheduler(lambda: None, 10)
        scheduler.stop()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()
        assert not scheduler.is_running

    def test_task_failures_do_not_stop_the_loop(self):
        task = MagicMock(side_effect=RuntimeError("boom"))
        scheduler = RetentionScheduler(task, 0.02)

        scheduler.start()
        try:
            assert wait_for(lambda: scheduler.failures >= 2)
            assert scheduler.is_running
        finally:
            scheduler.stop()

        status = scheduler.get_status()
        assert status["runs"] == 0
        assert status["last_run"] is not None


class TestStoreTimer:

    def test_timer_sweeps_in_background(self, tmp_path):
        clock = FakeClock(T)
        store = init_store(
            StoreConfig(db_path=str(tmp_path / "timer.db"), max_records=100,
                        max_age_minutes=30, cleanup_interval_ms=20),
            clock=clock,
        )
        try:
            assert store.scheduler.is_running
            store.create_or_append("run-1", "x")
            clock.now = T + timedelta(hours=1)

            assert wait_for(lambda: store.get("run-1") is None)
        finally:
            shutdown_store(store)

        assert store.scheduler is None
        assert store.table.closed

    def test_timer_stops_before_table_closes(self, tmp_path):
        store = init_store(
            StoreConfig(db_path=str(tmp_path / "order.db"), cleanup_interval_ms=20),
            clock=FakeClock(T),
        )
        scheduler = store.scheduler
        observed = []

        with patch.object(store.table, "close", side_effect=lambda: observed.append(scheduler.is_running)):
            store.shutdown()

        assert observed == [False]

    def test_concurrent_appends_and_sweeps(self, tmp_path):
        """Appends interleaved with manual sweeps never corrupt the stored sequence."""
        clock = FakeClock(T)
        store = make_store(tmp_path, clock, max_records=1000)
        errors = []

        def writer(worker):
            try:
                for i in range(20):
                    store.create_or_append(f"worker-{worker}", i)
            except Exception as e:
                errors.append(e)

        def sweeper():
            try:
                for _ in range(20):
                    store.run_cleanup_now()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(3)]
        threads.append(threading.Thread(target=sweeper))
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            for w in range(3):
                assert store.get(f"worker-{w}").payload == list(range(20))
        finally:
            store.shutdown()


def test_report_totals():
    report = CleanupReport(deleted_by_age=3, deleted_by_count=4, remaining_records=9)
    assert report.total_deleted == 7
    assert report.to_dict()["totalDeleted"] == 7
