"""Periodic task scheduling."""

import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class Job:
    name: str
    interval: float
    task: Callable[[], object]
    run_immediately: bool = False
    runs: int = 0
    skipped: int = 0
    cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    thread: Optional[threading.Thread] = field(default=None, repr=False)


class PeriodicScheduler:
    """Runs named tasks on fixed cadences, one daemon thread per job.

    A job never overlaps with itself: when a run outlasts the interval, the
    slots it covered are skipped and the next run is aligned to the next
    future slot of the original cadence.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._stop = threading.Event()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def add(self, name: str, interval: float, task: Callable[[], object],
            run_immediately: bool = False) -> Job:
        if interval <= 0:
            raise ValueError(f"interval for job '{name}' must be positive, got {interval}")
        if name in self._jobs:
            raise ValueError(f"job '{name}' is already scheduled")
        job = Job(name=name, interval=interval, task=task, run_immediately=run_immediately)
        self._jobs[name] = job
        if self._stop.is_set():
            job.cancelled.set()
        elif self._started:
            self._spawn(job)
        return job

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def remove(self, name: str) -> bool:
        """Unschedule a job. A run already in progress finishes; no new run starts."""
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        job.cancelled.set()
        return True

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for job in self._jobs.values():
            self._spawn(job)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal every job to stop and wait for in-flight runs to finish."""
        self._stop.set()
        for job in self._jobs.values():
            job.cancelled.set()
        for job in self._jobs.values():
            if job.thread is not None and job.thread is not threading.current_thread():
                job.thread.join(timeout)

    def _spawn(self, job: Job) -> None:
        job.thread = threading.Thread(
            target=self._run_job, args=(job,), name=f"scheduler-{job.name}", daemon=True,
        )
        job.thread.start()

    def _run_job(self, job: Job) -> None:
        next_run = self._clock() + (0 if job.run_immediately else job.interval)
        while not job.cancelled.wait(max(0.0, next_run - self._clock())):
            try:
                job.task()
            except Exception as exc:
                print(f"[scheduler] job '{job.name}' failed: {exc!r}", file=sys.stderr)
            job.runs += 1

            next_run += job.interval
            now = self._clock()
            if next_run <= now:
                missed = int((now - next_run) // job.interval) + 1
                next_run += missed * job.interval
                job.skipped += missed
                print(
                    f"[scheduler] job '{job.name}' overran its {job.interval:g}s interval;"
                    f" skipped {missed} tick(s)",
                    file=sys.stderr,
                )
