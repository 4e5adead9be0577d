"""Notification dispatch — turns classified items into alerts on each channel.

For every qualifying item the dispatcher:

1. Checks the dispatch record (user, item, tier, calendar day) and stops if
   an alert for that key already exists.
2. Persists the in-app notification. The UNIQUE index on the dispatch key
   makes this the authoritative duplicate check.
3. Fans out to push and email according to the user's preferences. Each
   channel is attempted once and independently; a failure is logged and
   counted but never blocks the other channel or the next item.

Expired items produce no alert: the auto-expire maintenance job retires
them. Stock alerts ('low_stock', 'restock') use the same dispatch record with
the stock tier in place of the expiry bucket and the quantity in place of
the calendar day: a low item is announced once, and again only after its
quantity changes.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from grocery_tracker.core import items as items_core
from grocery_tracker.core import notifications as notifications_core
from grocery_tracker.core.channels import EMAIL, PUSH, ChannelResult, ChannelSender
from grocery_tracker.core.classifier import classify
from grocery_tracker.db.models import (
    Bucket,
    ExpiryPayload,
    GroceryItem,
    Notification,
    NotificationType,
    Priority,
    StockPayload,
    SystemPayload,
    User,
)

logger = logging.getLogger(__name__)

DISPATCH_BUCKETS = frozenset({Bucket.TODAY, Bucket.TOMORROW, Bucket.SOON})

LOW_STOCK_TIER = "low_stock"
RESTOCK_TIER = "restock"
DIGEST_TIER = "weekly_digest"

DIGEST_SUBJECT = "Your Weekly Grocery Summary"

# bucket -> (notification type, priority)
_EXPIRY_RULES = {
    Bucket.TODAY: (NotificationType.EXPIRY_ALERT, Priority.URGENT),
    Bucket.TOMORROW: (NotificationType.EXPIRY_WARNING, Priority.HIGH),
    Bucket.SOON: (NotificationType.EXPIRY_WARNING, Priority.MEDIUM),
}

_EXPIRY_TYPES = (NotificationType.EXPIRY_ALERT.value, NotificationType.EXPIRY_WARNING.value)


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of evaluating one item.

    status is one of: sent, duplicate, not_due, no_expiry.
    """
    status: str
    tier: Optional[str] = None
    notification_id: Optional[int] = None
    channel_results: tuple[ChannelResult, ...] = ()

    @property
    def channel_failures(self) -> int:
        return sum(1 for r in self.channel_results if not r.ok)


@dataclass
class UserRunResult:
    user_id: int
    alerts_sent: int = 0
    skipped: int = 0
    invalid: int = 0
    channel_failures: int = 0
    aborted: bool = False
    errors: list[str] = field(default_factory=list)


def _fmt_qty(quantity: float) -> str:
    return f"{quantity:g}"


def stock_key(quantity: float) -> str:
    """Dispatch key for a stock alert raised at `quantity`."""
    return f"qty:{_fmt_qty(quantity)}"


def _expiry_text(item: GroceryItem, bucket: Bucket, days_left: int) -> tuple[str, str]:
    if bucket == Bucket.TODAY:
        return (f"Expires today: {item.name}",
                f"{item.name} expires today. Use it or freeze it before it goes to waste.")
    if bucket == Bucket.TOMORROW:
        return (f"Expires tomorrow: {item.name}",
                f"{item.name} expires tomorrow ({item.expiry_date}).")
    return (f"Expiring soon: {item.name}",
            f"{item.name} expires in {days_left} days ({item.expiry_date}).")


class NotificationDispatcher:
    """Evaluates items for one user at a time and dispatches alerts.

    `clock` returns the current time; it is converted to `tz` so the
    calendar day used for bucketing and for the dispatch record is the
    configured local day.
    """

    def __init__(
        self,
        channels: ChannelSender,
        tz=timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
        aggregator=None,
    ):
        self.channels = channels
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.aggregator = aggregator

    def now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    # ── Per item ────────────────────────────────────────────────────────────────

    def evaluate_and_dispatch(
        self,
        user: User,
        item: GroceryItem,
        buckets: Iterable[Bucket] = DISPATCH_BUCKETS,
        now: Optional[datetime] = None,
    ) -> DispatchOutcome:
        """Classify an item and dispatch its expiry alert if due.

        Raises ValueError for an unparseable expiry date and sqlite3.Error if
        the notification store fails; channel failures are reported in the
        outcome instead.
        """
        now = now or self.now()
        result = classify(item.expiry_date, now, user.preferences.expiry_alert_days)
        if result.days_left is None:
            return DispatchOutcome("no_expiry")
        bucket = result.bucket
        if bucket not in buckets or bucket not in _EXPIRY_RULES:
            return DispatchOutcome("not_due", tier=bucket.value)

        ntype, priority = _EXPIRY_RULES[bucket]
        title, message = _expiry_text(item, bucket, result.days_left)
        payload = ExpiryPayload(
            item_name=item.name,
            expiry_date=str(item.expiry_date),
            days_left=result.days_left,
            bucket=bucket.value,
        )
        return self._dispatch(user, item, bucket.value, now.date().isoformat(),
                              ntype, priority, title, message, payload, now)

    def evaluate_stock(self, user: User, item: GroceryItem, now: Optional[datetime] = None) -> DispatchOutcome:
        """Dispatch a low-stock or restock alert for an active item if due."""
        now = now or self.now()
        quantity = item.quantity or 0
        threshold = item.low_stock_threshold or 0
        if quantity <= 0:
            tier, ntype, priority = RESTOCK_TIER, NotificationType.RESTOCK, Priority.LOW
            title = f"Out of stock: {item.name}"
            message = f"You're out of {item.name}. Add it to your shopping list."
        elif quantity <= threshold:
            tier, ntype, priority = LOW_STOCK_TIER, NotificationType.LOW_STOCK, Priority.MEDIUM
            unit = f" {item.unit}" if item.unit else ""
            title = f"Running low: {item.name}"
            message = f"Only {_fmt_qty(quantity)}{unit} of {item.name} left."
        else:
            return DispatchOutcome("not_due")

        payload = StockPayload(
            item_name=item.name, quantity=quantity, unit=item.unit, threshold=threshold
        )
        return self._dispatch(user, item, tier, stock_key(quantity),
                              ntype, priority, title, message, payload, now)

    def _dispatch(self, user, item, tier, key, ntype, priority, title, message, payload, now) -> DispatchOutcome:
        if notifications_core.exists(user.id, item.id, tier, key):
            logger.debug("Alert already sent: user=%s item=%s tier=%s key=%s", user.id, item.id, tier, key)
            return DispatchOutcome("duplicate", tier=tier)

        notification = Notification(
            id=None,
            user_id=user.id,
            type=ntype.value,
            priority=priority.value,
            title=title,
            message=message,
            related_item_id=item.id,
            alert_tier=tier,
            dispatch_day=key,
            payload=payload,
            created_at=now.astimezone(timezone.utc).isoformat(timespec="seconds"),
        )
        notification_id = notifications_core.create(notification)
        if notification_id is None:
            # Lost a race with a concurrent run for the same key.
            return DispatchOutcome("duplicate", tier=tier)
        notification.id = notification_id

        results = self._fan_out(user, notification)
        if any(r.ok for r in results):
            notifications_core.mark_sent(notification_id, now)
        return DispatchOutcome("sent", tier=tier, notification_id=notification_id,
                               channel_results=results)

    def _fan_out(self, user: User, notification: Notification) -> tuple[ChannelResult, ...]:
        prefs = user.preferences
        metadata = {
            "notification_id": notification.id,
            "item_id": notification.related_item_id,
            "type": notification.type,
            "priority": notification.priority,
        }
        sends = []
        if prefs.push_notifications:
            sends.append((PUSH, lambda: self.channels.send_push(
                user.id, notification.title, notification.message, metadata)))
        if prefs.email_notifications:
            sends.append((EMAIL, lambda: self.channels.send_email(
                user.id, f"Grocery alert: {notification.title}", notification.message)))

        results = []
        for channel, send in sends:
            try:
                result = send()
            except Exception as e:
                logger.exception("Channel %s raised for user=%s item=%s",
                                 channel, user.id, notification.related_item_id)
                result = ChannelResult(channel, False, str(e) or type(e).__name__)
            if not result.ok:
                logger.warning("Channel %s failed for user=%s item=%s: %s",
                               channel, user.id, notification.related_item_id, result.reason)
            results.append(result)
        return tuple(results)

    # ── Per user ────────────────────────────────────────────────────────────────

    def run_for_user(
        self,
        user: User,
        buckets: Iterable[Bucket] = DISPATCH_BUCKETS,
        include_stock: bool = True,
    ) -> UserRunResult:
        """Evaluate all of a user's active items.

        A malformed item is skipped and counted as invalid. A persistence
        error aborts the rest of this user's items; the caller moves on to
        the next user.
        """
        buckets = frozenset(buckets)
        now = self.now()
        result = UserRunResult(user_id=user.id)
        try:
            items = items_core.list_active_items(user.id)
        except sqlite3.Error as e:
            logger.exception("Could not load items for user=%s", user.id)
            result.aborted = True
            result.errors.append(f"load items: {e}")
            return result

        for item in items:
            try:
                self._tally(result, self.evaluate_and_dispatch(user, item, buckets, now=now))
                if include_stock:
                    self._tally(result, self.evaluate_stock(user, item, now=now))
            except ValueError as e:
                logger.warning("Skipping item %s for user=%s: %s", item.id, user.id, e)
                result.invalid += 1
            except sqlite3.Error as e:
                logger.exception("Store failure for user=%s at item=%s; aborting user", user.id, item.id)
                result.aborted = True
                result.errors.append(f"item {item.id}: {e}")
                break
        return result

    @staticmethod
    def _tally(result: UserRunResult, outcome: DispatchOutcome) -> None:
        if outcome.status == "sent":
            result.alerts_sent += 1
            result.channel_failures += outcome.channel_failures
        elif outcome.status == "duplicate":
            result.skipped += 1

    # ── Weekly digest ───────────────────────────────────────────────────────────

    def send_weekly_digest(self, user: User) -> Optional[ChannelResult]:
        """Summarise the past 7 days: expiry alerts, spending and waste.

        The digest is recorded in-app as a system notification, at most once
        per user and day, then emailed. Returns None when it was already
        recorded today or the user has email notifications turned off.
        """
        if self.aggregator is None:
            raise RuntimeError("weekly digest needs an aggregator")

        now = self.now()
        end = now.date()
        start = end - timedelta(days=6)
        if notifications_core.exists(user.id, None, DIGEST_TIER, end.isoformat()):
            logger.debug("Weekly digest already recorded for user=%s on %s", user.id, end)
            return None
        since = (now - timedelta(days=7)).astimezone(timezone.utc).isoformat(timespec="seconds")
        alerts = notifications_core.list_since(user.id, since, types=_EXPIRY_TYPES)
        expense = self.aggregator.expense_report(user.id, start, end)
        waste = self.aggregator.waste_analysis(user.id, start, end)

        body = format_digest(user, alerts, expense, waste)
        notifications_core.create(Notification(
            id=None,
            user_id=user.id,
            type=NotificationType.SYSTEM.value,
            priority=Priority.LOW.value,
            title=DIGEST_SUBJECT,
            message=body,
            alert_tier=DIGEST_TIER,
            dispatch_day=end.isoformat(),
            payload=SystemPayload(
                text=f"{len(alerts)} expiry alert(s), ${expense.total_value:.2f} spent, "
                     f"{waste.item_count} item(s) wasted",
                extra={
                    "start": start.isoformat(),
                    "end": end.isoformat(),
                    "alerts": len(alerts),
                    "spent": expense.total_value,
                    "wasted": waste.item_count,
                },
            ),
            created_at=now.astimezone(timezone.utc).isoformat(timespec="seconds"),
        ))

        if not user.preferences.email_notifications:
            return None
        result = self.channels.send_email(user.id, DIGEST_SUBJECT, body)
        if not result.ok:
            logger.warning("Weekly digest failed for user=%s: %s", user.id, result.reason)
        return result


def format_digest(user: User, alerts: list[Notification], expense, waste) -> str:
    """Render the weekly digest as plain text."""
    lines = [
        f"Hi {user.name},",
        "",
        f"Here is your grocery summary for {expense.start} to {expense.end}.",
        "",
        f"Spending: ${expense.total_value:.2f} across {expense.item_count} items "
        f"(${expense.average_per_day:.2f}/day)",
    ]
    for share in expense.categories[:5]:
        lines.append(f"  - {share.category}: ${share.value:.2f} ({share.percentage:.1f}%)")

    lines += [
        "",
        f"Waste: {waste.item_count} items worth ${waste.waste_value:.2f} "
        f"({waste.waste_percentage:.1f}% of items added)",
    ]

    lines += ["", f"Expiry alerts this week: {len(alerts)}"]
    for alert in alerts[:20]:
        lines.append(f"  - [{alert.priority}] {alert.title}")

    if waste.insights:
        lines += ["", "Tips:"]
        lines += [f"  - {tip}" for tip in waste.insights]
    return "\n".join(lines) + "\n"
