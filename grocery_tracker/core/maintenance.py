"""Housekeeping jobs: auto-expire overdue items and prune old records.

Both operations are safe to run repeatedly. Deletions are always filtered by
status and age together.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from grocery_tracker.config import Settings
from grocery_tracker.core import items as items_core
from grocery_tracker.core import notifications as notifications_core
from grocery_tracker.db.models import ItemStatus, NotificationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    notifications_deleted: int = 0
    expired_items_deleted: int = 0
    consumed_items_deleted: int = 0
    wasted_items_deleted: int = 0


def _cutoff(now: datetime, days: int) -> str:
    return (now - timedelta(days=days)).astimezone(timezone.utc).isoformat(timespec="seconds")


def auto_expire(now: datetime) -> int:
    """Mark active items whose expiry date is before today (in now's timezone) as expired."""
    today = now.date().isoformat()
    overdue = items_core.find_overdue(today)
    changed = items_core.mark_expired(overdue, now)
    if changed:
        logger.info("Auto-expired %d item(s)", changed)
    return changed


def cleanup(now: datetime, settings: Settings) -> CleanupResult:
    """Delete read or archived notifications and retired items past their retention.

    Wasted items share the expired-item retention period.
    """
    result = CleanupResult(
        notifications_deleted=notifications_core.delete_older_than(
            [NotificationStatus.READ.value, NotificationStatus.ARCHIVED.value],
            _cutoff(now, settings.notification_retention_days),
        ),
        expired_items_deleted=items_core.delete_retired(
            ItemStatus.EXPIRED.value, _cutoff(now, settings.expired_item_retention_days)
        ),
        consumed_items_deleted=items_core.delete_retired(
            ItemStatus.CONSUMED.value, _cutoff(now, settings.consumed_item_retention_days)
        ),
        wasted_items_deleted=items_core.delete_retired(
            ItemStatus.WASTED.value, _cutoff(now, settings.expired_item_retention_days)
        ),
    )
    logger.info(
        "Cleanup removed %d notification(s), %d expired, %d consumed and %d wasted item(s)",
        result.notifications_deleted, result.expired_items_deleted, result.consumed_items_deleted,
        result.wasted_items_deleted,
    )
    return result
