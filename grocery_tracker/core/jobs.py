"""The scheduled jobs and their default cadences.

Each job lists the active users and processes them on a bounded thread pool.
One user's items are handled sequentially by a single worker, so the
store-then-notify order holds per user. A failing user is logged and
counted; only a failure to list users at all fails the whole run. The
cancellation Event is checked before each user starts.
"""

import contextvars
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from grocery_tracker.config import Settings
from grocery_tracker.core import maintenance
from grocery_tracker.core import users as users_core
from grocery_tracker.core.dispatcher import DISPATCH_BUCKETS, NotificationDispatcher, UserRunResult
from grocery_tracker.core.scheduler import DailyAt, Hourly, MonthlyAt, Scheduler, WeeklyAt
from grocery_tracker.db.models import Bucket, User

logger = logging.getLogger(__name__)

HOURLY_CHECK = "hourly_expiry_check"
DAILY_CHECK = "daily_expiry_check"
WEEKLY_DIGEST = "weekly_digest"
MONTHLY_CLEANUP = "monthly_cleanup"


@dataclass
class JobRunSummary:
    job: str
    users_processed: int = 0
    alerts_sent: int = 0
    skipped: int = 0
    invalid: int = 0
    errors: int = 0
    channel_failures: int = 0
    items_expired: int = 0
    cancelled: bool = False
    failed: bool = False
    error: Optional[str] = None


class ExpiryJobs:
    """Job bodies bound to a dispatcher, settings and a clock."""

    def __init__(self, dispatcher: NotificationDispatcher, settings: Settings):
        self.dispatcher = dispatcher
        self.settings = settings

    def now(self) -> datetime:
        return self.dispatcher.now()

    def _for_each_user(
        self,
        summary: JobRunSummary,
        work: Callable[[User], Optional[UserRunResult]],
        cancel: Optional[threading.Event],
    ) -> JobRunSummary:
        try:
            active = users_core.list_active_users()
        except sqlite3.Error as e:
            logger.error("%s: could not list users: %s", summary.job, e, exc_info=True)
            summary.failed = True
            summary.error = str(e)
            return summary

        def guarded(user: User) -> Optional[UserRunResult]:
            if cancel is not None and cancel.is_set():
                return None
            return work(user)

        with ThreadPoolExecutor(
            max_workers=self.settings.job_workers, thread_name_prefix=summary.job
        ) as pool:
            futures = [
                (user, pool.submit(contextvars.copy_context().run, guarded, user))
                for user in active
            ]
            for user, future in futures:
                try:
                    result = future.result()
                except Exception:
                    logger.exception("%s: user=%s failed", summary.job, user.id)
                    summary.errors += 1
                    continue
                if result is None:
                    summary.cancelled = True
                    continue
                summary.users_processed += 1
                summary.alerts_sent += result.alerts_sent
                summary.skipped += result.skipped
                summary.invalid += result.invalid
                summary.channel_failures += result.channel_failures
                summary.errors += len(result.errors)

        logger.info(
            "%s: %d user(s), %d alert(s) sent, %d duplicate(s), %d invalid, "
            "%d channel failure(s), %d error(s)%s",
            summary.job, summary.users_processed, summary.alerts_sent, summary.skipped,
            summary.invalid, summary.channel_failures, summary.errors,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    def hourly_check(self, cancel: Optional[threading.Event] = None) -> JobRunSummary:
        """Alert on items expiring today only."""
        return self._for_each_user(
            JobRunSummary(HOURLY_CHECK),
            lambda user: self.dispatcher.run_for_user(user, buckets={Bucket.TODAY}, include_stock=False),
            cancel,
        )

    def daily_check(self, cancel: Optional[threading.Event] = None) -> JobRunSummary:
        """Full expiry and stock pass, then retire items already past expiry."""
        summary = self._for_each_user(
            JobRunSummary(DAILY_CHECK),
            lambda user: self.dispatcher.run_for_user(user, buckets=DISPATCH_BUCKETS, include_stock=True),
            cancel,
        )
        if summary.failed or summary.cancelled:
            return summary
        try:
            summary.items_expired = maintenance.auto_expire(self.now())
        except sqlite3.Error as e:
            logger.error("%s: auto-expire failed: %s", summary.job, e, exc_info=True)
            summary.failed = True
            summary.error = str(e)
        return summary

    def weekly_digest(self, cancel: Optional[threading.Event] = None) -> JobRunSummary:
        def send(user: User) -> UserRunResult:
            result = UserRunResult(user_id=user.id)
            outcome = self.dispatcher.send_weekly_digest(user)
            if outcome is not None:
                if outcome.ok:
                    result.alerts_sent = 1
                else:
                    result.channel_failures = 1
            return result

        return self._for_each_user(JobRunSummary(WEEKLY_DIGEST), send, cancel)

    def monthly_cleanup(self, cancel: Optional[threading.Event] = None) -> JobRunSummary:
        summary = JobRunSummary(MONTHLY_CLEANUP)
        try:
            maintenance.cleanup(self.now(), self.settings)
        except sqlite3.Error as e:
            logger.error("%s: cleanup failed: %s", summary.job, e, exc_info=True)
            summary.failed = True
            summary.error = str(e)
        return summary


class JobFailed(RuntimeError):
    """A run-level failure, raised so the scheduler records it as the job's last error."""


def _escalating(job: Callable[[threading.Event], JobRunSummary]) -> Callable[[threading.Event], JobRunSummary]:
    def task(cancel: threading.Event) -> JobRunSummary:
        summary = job(cancel)
        if summary.failed:
            raise JobFailed(f"{summary.job}: {summary.error}")
        return summary
    return task


def build_scheduler(jobs: ExpiryJobs, tz, poll_interval: float = 1.0, clock=None) -> Scheduler:
    """Register the four standard jobs on a new scheduler."""
    scheduler = Scheduler(tz=tz, clock=clock, poll_interval=poll_interval, persist_state=True)
    scheduler.register(HOURLY_CHECK, Hourly(minute=0), _escalating(jobs.hourly_check))
    scheduler.register(DAILY_CHECK, DailyAt(hour=9), _escalating(jobs.daily_check))
    scheduler.register(WEEKLY_DIGEST, WeeklyAt(weekday=0, hour=8), _escalating(jobs.weekly_digest))
    scheduler.register(MONTHLY_CLEANUP, MonthlyAt(day=1, hour=2), _escalating(jobs.monthly_cleanup))
    return scheduler
