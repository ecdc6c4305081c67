import threading
from datetime import datetime, timedelta

import pytest

from variantwatch.scheduler import Scheduler


def test_first_run_waits_for_initial_delay():
    scheduler = Scheduler(lambda: None, interval_minutes=60, initial_delay_minutes=5)
    scheduler.start()
    try:
        next_run = scheduler.next_run_time
        now = datetime.now(next_run.tzinfo)
        assert timedelta(minutes=4) < next_run - now <= timedelta(minutes=5)
    finally:
        scheduler.stop()
    assert scheduler.next_run_time is None


def test_trigger_runs_immediately():
    ran = threading.Event()
    scheduler = Scheduler(ran.set, interval_minutes=60, initial_delay_minutes=60)
    scheduler.start()
    try:
        scheduler.trigger()
        assert ran.wait(5)
    finally:
        scheduler.stop()
    assert scheduler.runs == 1


def test_failed_run_does_not_stop_schedule(caplog):
    failed = threading.Event()
    recovered = threading.Event()

    def callback():
        if not failed.is_set():
            failed.set()
            raise RuntimeError("boom")
        recovered.set()

    scheduler = Scheduler(callback, interval_minutes=60, initial_delay_minutes=60)
    scheduler.start()
    try:
        with caplog.at_level("ERROR"):
            scheduler.trigger()
            assert failed.wait(5)
            for _ in range(50):
                scheduler.trigger()
                if recovered.wait(0.1):
                    break
            assert recovered.is_set()
    finally:
        scheduler.stop()
    assert scheduler.runs >= 2
    assert "Scheduled run failed" in caplog.text


def test_stop_before_first_run():
    calls = []
    scheduler = Scheduler(lambda: calls.append(1), interval_minutes=60, initial_delay_minutes=60)
    scheduler.start()
    scheduler.stop()
    assert calls == []


def test_trigger_requires_running_scheduler():
    with pytest.raises(RuntimeError):
        Scheduler(lambda: None).trigger()
