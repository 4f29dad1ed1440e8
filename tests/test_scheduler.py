"""Tests for PeriodicScheduler."""

import threading
import time

import pytest

from registrar.scheduler import PeriodicScheduler


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def scheduler():
    s = PeriodicScheduler()
    yield s
    s.stop(timeout=5)


def test_job_runs_repeatedly(scheduler):
    job = scheduler.add("tick", 0.05, lambda: None)
    scheduler.start()
    assert scheduler.running
    assert _wait_until(lambda: job.runs >= 3)


def test_job_waits_one_interval_unless_run_immediately(scheduler):
    slow = scheduler.add("slow", 60, lambda: None)
    eager = scheduler.add("eager", 60, lambda: None, run_immediately=True)
    scheduler.start()
    assert _wait_until(lambda: eager.runs == 1)
    assert slow.runs == 0


def test_job_added_after_start_is_spawned(scheduler):
    scheduler.start()
    job = scheduler.add("late", 0.05, lambda: None)
    assert _wait_until(lambda: job.runs >= 1)


def test_overrunning_job_never_overlaps_and_skips_slots(scheduler):
    active = 0
    peak = 0
    lock = threading.Lock()

    def _slow():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.25)
        with lock:
            active -= 1

    job = scheduler.add("slow", 0.1, _slow)
    scheduler.start()
    assert _wait_until(lambda: job.runs >= 2)
    scheduler.stop(timeout=5)

    assert peak == 1
    assert job.skipped >= 2


def test_failing_task_keeps_job_alive(scheduler, capsys):
    calls = []

    def _flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    job = scheduler.add("flaky", 0.05, _flaky)
    scheduler.start()
    assert _wait_until(lambda: job.runs >= 2)
    assert "job 'flaky' failed" in capsys.readouterr().err


def test_stop_halts_jobs(scheduler):
    job = scheduler.add("tick", 0.05, lambda: None)
    scheduler.start()
    assert _wait_until(lambda: job.runs >= 1)
    scheduler.stop(timeout=5)
    runs = job.runs
    time.sleep(0.2)
    assert job.runs == runs
    assert not scheduler.running


def test_add_validation(scheduler):
    scheduler.add("tick", 1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add("tick", 1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add("bad", 0, lambda: None)


def test_removed_job_stops_running(scheduler):
    job = scheduler.add("tick", 0.05, lambda: None)
    scheduler.start()
    assert _wait_until(lambda: job.runs >= 1)
    assert scheduler.remove("tick")
    job.thread.join(timeout=5)
    runs = job.runs
    time.sleep(0.2)
    assert job.runs == runs
    assert scheduler.get("tick") is None
    # Other jobs keep running
    assert scheduler.running


def test_remove_unknown_job(scheduler):
    assert not scheduler.remove("missing")


def test_removed_name_can_be_added_again(scheduler):
    scheduler.add("tick", 60, lambda: None)
    scheduler.remove("tick")
    assert scheduler.add("tick", 60, lambda: None).name == "tick"
