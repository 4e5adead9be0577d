"""Named recurring jobs on wall-clock cadences.

A single daemon loop thread wakes every `poll_interval` seconds and starts
each due job on its own thread. Each job holds a lock while it runs: if a
job is still running when its next tick (or a manual trigger) arrives, that
invocation is skipped and counted, never queued and never run in parallel.

Tasks are called with the scheduler's cancellation Event and should check
it between units of work. stop() sets the Event, then waits for in-flight
jobs to finish.

Cadences are evaluated in the scheduler's timezone. With persist_state,
the last run of every job is stored in the settings table; start(catch_up=True)
then runs once any job whose scheduled time passed while the process was down.
"""

import calendar
import contextvars
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, Optional, Union

from grocery_tracker.config import get_setting, set_setting

logger = logging.getLogger(__name__)

_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

Task = Callable[[threading.Event], object]


def _at(day, hour: int, minute: int, tz) -> datetime:
    return datetime.combine(day, dtime(hour, minute), tzinfo=tz)


@dataclass(frozen=True)
class Interval:
    """Every `seconds` seconds, measured from the previous check."""
    seconds: float

    def next_after(self, moment: datetime, tz) -> datetime:
        return (moment + timedelta(seconds=self.seconds)).astimezone(tz)

    def describe(self) -> str:
        return f"every {self.seconds:g}s"


@dataclass(frozen=True)
class Hourly:
    minute: int = 0

    def next_after(self, moment: datetime, tz) -> datetime:
        local = moment.astimezone(tz)
        candidate = local.replace(minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            # Step in UTC so DST changes don't repeat or skip an hour.
            later = (candidate.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(tz)
            candidate = later.replace(minute=self.minute, second=0, microsecond=0)
        return candidate

    def describe(self) -> str:
        return f"hourly at :{self.minute:02d}"


@dataclass(frozen=True)
class DailyAt:
    hour: int
    minute: int = 0

    def next_after(self, moment: datetime, tz) -> datetime:
        local = moment.astimezone(tz)
        candidate = _at(local.date(), self.hour, self.minute, tz)
        if candidate <= local:
            candidate = _at(local.date() + timedelta(days=1), self.hour, self.minute, tz)
        return candidate

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class WeeklyAt:
    """weekday follows datetime.weekday(): Monday is 0."""
    weekday: int
    hour: int
    minute: int = 0

    def next_after(self, moment: datetime, tz) -> datetime:
        local = moment.astimezone(tz)
        ahead = (self.weekday - local.weekday()) % 7
        candidate = _at(local.date() + timedelta(days=ahead), self.hour, self.minute, tz)
        if candidate <= local:
            candidate = _at(local.date() + timedelta(days=ahead + 7), self.hour, self.minute, tz)
        return candidate

    def describe(self) -> str:
        return f"weekly on {_WEEKDAYS[self.weekday]} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class MonthlyAt:
    """Runs on `day` of each month, clamped to the last day of shorter months."""
    day: int
    hour: int
    minute: int = 0

    def _in_month(self, year: int, month: int, tz) -> datetime:
        last = calendar.monthrange(year, month)[1]
        return _at(date(year, month, min(self.day, last)), self.hour, self.minute, tz)

    def next_after(self, moment: datetime, tz) -> datetime:
        local = moment.astimezone(tz)
        candidate = self._in_month(local.year, local.month, tz)
        if candidate <= local:
            year, month = (local.year + 1, 1) if local.month == 12 else (local.year, local.month + 1)
            candidate = self._in_month(year, month, tz)
        return candidate

    def describe(self) -> str:
        return f"monthly on day {self.day} at {self.hour:02d}:{self.minute:02d}"


Cadence = Union[Interval, Hourly, DailyAt, WeeklyAt, MonthlyAt]


@dataclass
class JobDescriptor:
    """Point-in-time view of a registered job."""
    name: str
    cadence: str
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    running: bool = False
    run_count: int = 0
    skipped_count: int = 0
    last_error: Optional[str] = None
    last_duration: Optional[float] = None


class _Job:
    def __init__(self, name: str, cadence: Cadence, task: Task):
        self.name = name
        self.cadence = cadence
        self.task = task
        self.lock = threading.Lock()
        self.thread: Optional[threading.Thread] = None
        self.last_run: Optional[datetime] = None
        self.next_run: Optional[datetime] = None
        self.running = False
        self.run_count = 0
        self.skipped_count = 0
        self.last_error: Optional[str] = None
        self.last_duration: Optional[float] = None


def _state_key(name: str) -> str:
    return f"job_last_run:{name}"


class Scheduler:
    def __init__(
        self,
        tz=timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
        poll_interval: float = 1.0,
        persist_state: bool = False,
    ):
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.poll_interval = poll_interval
        self.persist_state = persist_state
        self._jobs: dict[str, _Job] = {}
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    @property
    def running(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    def register(self, name: str, cadence: Cadence, task: Task) -> None:
        """Add a job. Names are unique; registering a name twice raises ValueError."""
        with self._lock:
            if name in self._jobs:
                raise ValueError(f"job {name!r} is already registered")
            job = _Job(name, cadence, task)
            job.next_run = cadence.next_after(self._now(), self.tz)
            self._jobs[name] = job

    def start(self, catch_up: bool = False) -> None:
        """Start the scheduling loop. Calling start() on a running scheduler is a no-op."""
        if self.running:
            return
        self._cancel.clear()
        now = self._now()
        for job in list(self._jobs.values()):
            job.next_run = job.cadence.next_after(now, self.tz)
            if self.persist_state:
                job.last_run = self._load_last_run(job.name)
                if catch_up and job.last_run and job.cadence.next_after(job.last_run, self.tz) <= now:
                    logger.info("Job %s missed a run since %s; catching up", job.name, job.last_run)
                    self._launch(job, "catch-up")

        self._loop_thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._loop_thread.start()
        logger.info("Scheduler started with %d job(s) in %s", len(self._jobs), self.tz)

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Signal cancellation and wait for the loop and any running jobs to finish."""
        self._cancel.set()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
            self._loop_thread = None
        for job in list(self._jobs.values()):
            thread = job.thread
            if thread is not None and thread.is_alive():
                thread.join(timeout)
                if thread.is_alive():
                    logger.warning("Job %s did not stop within %ss", job.name, timeout)
        logger.info("Scheduler stopped")

    def trigger_now(self, name: str, wait: bool = False) -> bool:
        """Run a job immediately, outside its cadence.

        Works whether or not the loop is running; a trigger after stop()
        runs with a fresh cancellation flag. Returns False if the job is
        already running (the trigger is skipped). Raises KeyError for an
        unknown job name.
        """
        job = self._jobs[name]
        if not self.running and not any(j.running for j in self._jobs.values()):
            self._cancel.clear()
        thread = self._launch(job, "manual")
        if thread is None:
            return False
        if wait:
            thread.join()
        return True

    def status(self) -> list[JobDescriptor]:
        with self._lock:
            return [
                JobDescriptor(
                    name=job.name,
                    cadence=job.cadence.describe(),
                    last_run=job.last_run,
                    next_run=job.next_run,
                    running=job.running,
                    run_count=job.run_count,
                    skipped_count=job.skipped_count,
                    last_error=job.last_error,
                    last_duration=job.last_duration,
                )
                for job in self._jobs.values()
            ]

    # ── Internals ───────────────────────────────────────────────────────────────

    def _loop(self) -> None:
        while not self._cancel.is_set():
            now = self._now()
            for job in list(self._jobs.values()):
                if job.next_run is not None and job.next_run <= now:
                    job.next_run = job.cadence.next_after(now, self.tz)
                    self._launch(job, "schedule")
            self._cancel.wait(self.poll_interval)

    def _launch(self, job: _Job, reason: str) -> Optional[threading.Thread]:
        if not job.lock.acquire(blocking=False):
            with self._lock:
                job.skipped_count += 1
            logger.info("Skipping %s run of %s: previous run still in progress", reason, job.name)
            return None
        # Run inside a copy of the caller's context so a DB override follows the job.
        ctx = contextvars.copy_context()
        thread = threading.Thread(
            target=ctx.run, args=(self._run, job, reason), name=f"job-{job.name}", daemon=True
        )
        with self._lock:
            job.running = True
            job.thread = thread
        thread.start()
        return thread

    def _run(self, job: _Job, reason: str) -> None:
        started = self._now()
        t0 = time.monotonic()
        logger.info("Job %s started (%s)", job.name, reason)
        error = None
        try:
            job.task(self._cancel)
        except Exception as e:
            logger.exception("Job %s failed", job.name)
            error = f"{type(e).__name__}: {e}"
        finally:
            duration = time.monotonic() - t0
            with self._lock:
                job.last_run = started
                job.last_duration = duration
                job.last_error = error
                job.run_count += 1
                job.running = False
            if self.persist_state:
                self._save_last_run(job.name, started)
            job.lock.release()
        logger.info("Job %s finished in %.2fs", job.name, duration)

    def _load_last_run(self, name: str) -> Optional[datetime]:
        try:
            value = get_setting(_state_key(name))
        except sqlite3.Error:
            logger.exception("Could not read last run of %s", name)
            return None
        return datetime.fromisoformat(value) if value else None

    def _save_last_run(self, name: str, when: datetime) -> None:
        try:
            set_setting(_state_key(name), when.astimezone(timezone.utc).isoformat(timespec="seconds"))
        except sqlite3.Error:
            logger.exception("Could not persist last run of %s", name)
