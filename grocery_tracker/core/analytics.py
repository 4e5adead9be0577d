"""Spending, waste and consumption analytics over a user's items.

All reports are read-only snapshots over a closed date range [start, end]
of local calendar days. Local days are converted to UTC timestamp bounds
for the timestamp columns (created_at, consumed_at, status changes);
purchase dates are compared as plain dates. Every percentage and average
guards its denominator, so an empty range yields zeros rather than errors.
"""

import csv
import io
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from grocery_tracker.core import items as items_core
from grocery_tracker.core.classifier import classify
from grocery_tracker.db.models import Bucket, GroceryItem, ItemStatus

logger = logging.getLogger(__name__)

REPORT_KINDS = ("expense", "waste", "consumption", "monthly", "categories")

EXPIRING_WINDOW_DAYS = 7
CRITICAL_DAYS = 3
DEFAULT_RANGE_DAYS = 30

EXPIRY_GROUPS = ("expired", "critical", "warning", "fresh")


@dataclass
class CategoryShare:
    category: str
    count: int
    value: float
    percentage: float


@dataclass
class DailyPoint:
    day: str
    count: int
    value: float


@dataclass
class ReportResult:
    kind: str
    start: str
    end: str
    total_value: float = 0.0
    item_count: int = 0
    average_per_day: float = 0.0
    waste_value: float = 0.0
    waste_percentage: float = 0.0
    consumption_rate: float = 0.0
    categories: list[CategoryShare] = field(default_factory=list)
    daily: list[DailyPoint] = field(default_factory=list)
    monthly: list[dict] = field(default_factory=list)
    top_items: list[dict] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)


@dataclass
class ExpiryEntry:
    id: int
    name: str
    status: str
    expiry_date: Optional[str]
    days_left: Optional[int]
    bucket: str
    quantity: float = 0.0
    unit: Optional[str] = None


@dataclass
class ExpirySummary:
    """Expiry health of a user's items, grouped by days left.

    expired: past expiry (still active, or already retired as expired)
    critical: 0-3 days left
    warning: 4-7 days left
    fresh: more than 7 days left
    """
    as_of: str
    expired: int = 0
    critical: int = 0
    warning: int = 0
    fresh: int = 0
    no_expiry: int = 0
    total: int = 0
    critical_percentage: float = 0.0
    items: dict[str, list[ExpiryEntry]] = field(default_factory=dict)


@dataclass
class Overview:
    total_items: int = 0
    active_items: int = 0
    expired_items: int = 0
    expiring_soon: int = 0
    low_stock: int = 0
    total_value: float = 0.0
    categories: list[CategoryShare] = field(default_factory=list)


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _value(row: dict) -> float:
    return (row.get("quantity") or 0) * (row.get("price") or 0)


def _shares(rows: list[dict]) -> list[CategoryShare]:
    counts: Counter = Counter()
    values: defaultdict = defaultdict(float)
    for row in rows:
        name = row.get("category_name") or "Uncategorized"
        counts[name] += 1
        values[name] += _value(row)
    total = sum(values.values())
    shares = [
        CategoryShare(name, counts[name], round(values[name], 2), _pct(values[name], total))
        for name in counts
    ]
    shares.sort(key=lambda s: (-s.value, -s.count, s.category))
    return shares


def _top_items(rows: list[dict], limit: int = 5) -> list[dict]:
    ranked = sorted(rows, key=lambda r: -_value(r))[:limit]
    return [{"id": r["id"], "name": r["name"], "value": round(_value(r), 2)} for r in ranked]


class Aggregator:
    """Builds dashboard and report data for one user at a time."""

    def __init__(self, tz=timezone.utc, clock: Optional[Callable[[], datetime]] = None):
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    # ── Date helpers ────────────────────────────────────────────────────────────

    def _utc_bounds(self, start: date, end: date) -> tuple[str, str]:
        """UTC ISO bounds [start 00:00 local, end+1 00:00 local) for timestamp columns."""
        lo = datetime.combine(start, time.min, tzinfo=self.tz).astimezone(timezone.utc)
        hi = datetime.combine(end + timedelta(days=1), time.min, tzinfo=self.tz).astimezone(timezone.utc)
        return lo.isoformat(timespec="seconds"), hi.isoformat(timespec="seconds")

    def _local_day(self, stamp: Optional[str]) -> Optional[str]:
        if not stamp:
            return None
        if len(stamp) == 10:
            return stamp
        moment = datetime.fromisoformat(stamp)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date().isoformat()

    def _daily(self, rows: list[dict], column: str) -> list[DailyPoint]:
        counts: Counter = Counter()
        values: defaultdict = defaultdict(float)
        for row in rows:
            day = self._local_day(row.get(column))
            if day is None:
                continue
            counts[day] += 1
            values[day] += _value(row)
        return [DailyPoint(day, counts[day], round(values[day], 2)) for day in sorted(counts)]

    @staticmethod
    def _check_range(start: date, end: date) -> None:
        if start > end:
            raise ValueError("start must not be after end")

    # ── Dashboard ───────────────────────────────────────────────────────────────

    def dashboard_stats(self, user_id: int) -> Overview:
        """Counts and value of a user's inventory as of now."""
        now = self.clock().astimezone(self.tz)
        items = items_core.list_items(user_id)
        overview = Overview(total_items=len(items))
        for item in items:
            if item.status == ItemStatus.EXPIRED.value:
                overview.expired_items += 1
            if item.status != ItemStatus.ACTIVE.value:
                continue
            overview.active_items += 1
            overview.total_value += (item.quantity or 0) * (item.price or 0)
            if (item.quantity or 0) <= (item.low_stock_threshold or 0):
                overview.low_stock += 1
            try:
                bucket = classify(item.expiry_date, now, EXPIRING_WINDOW_DAYS).bucket
            except ValueError:
                logger.warning("Item %s has an unreadable expiry date %r", item.id, item.expiry_date)
                continue
            if bucket in (Bucket.TODAY, Bucket.TOMORROW, Bucket.SOON):
                overview.expiring_soon += 1
        overview.total_value = round(overview.total_value, 2)

        groups = items_core.aggregate(user_id, group_by="category", statuses=[ItemStatus.ACTIVE.value])
        overview.categories = [
            CategoryShare(g["key"], g["count"], round(g["value"], 2), _pct(g["count"], overview.active_items))
            for g in groups
        ]
        return overview

    # ── Expiry ──────────────────────────────────────────────────────────────────

    def expiry_entry(self, item: GroceryItem, alert_window_days: int = 3) -> ExpiryEntry:
        """Classify one item as of now. Raises ValueError for an unreadable expiry date."""
        result = classify(item.expiry_date, self.clock().astimezone(self.tz), alert_window_days)
        return ExpiryEntry(
            id=item.id,
            name=item.name,
            status=item.status,
            expiry_date=item.expiry_date,
            days_left=result.days_left,
            bucket=result.bucket.value,
            quantity=item.quantity or 0,
            unit=item.unit,
        )

    def _expiry_entries(self, user_id: int, alert_window_days: int) -> list[ExpiryEntry]:
        entries = []
        for item in items_core.list_items(user_id):
            if item.status not in (ItemStatus.ACTIVE.value, ItemStatus.EXPIRED.value):
                continue
            try:
                entries.append(self.expiry_entry(item, alert_window_days))
            except ValueError:
                logger.warning("Item %s has an unreadable expiry date %r", item.id, item.expiry_date)
        return entries

    def expiring_soon(self, user_id: int, days: int = EXPIRING_WINDOW_DAYS,
                      alert_window_days: int = 3) -> list[ExpiryEntry]:
        """Active items expiring within `days` days (today included), soonest first."""
        if days < 0:
            raise ValueError("days must be >= 0")
        entries = [
            e for e in self._expiry_entries(user_id, alert_window_days)
            if e.status == ItemStatus.ACTIVE.value and e.days_left is not None and 0 <= e.days_left <= days
        ]
        return sorted(entries, key=lambda e: (e.days_left, e.id))

    def expired_items(self, user_id: int, alert_window_days: int = 3) -> list[ExpiryEntry]:
        """Items past their expiry date, most recently expired first."""
        entries = [
            e for e in self._expiry_entries(user_id, alert_window_days)
            if e.days_left is not None and e.days_left < 0
        ]
        return sorted(entries, key=lambda e: (-e.days_left, e.id))

    def expiry_summary(self, user_id: int, alert_window_days: int = 3) -> ExpirySummary:
        """Counts and item lists per expiry group as of today."""
        summary = ExpirySummary(as_of=self.today().isoformat(),
                                items={group: [] for group in EXPIRY_GROUPS})
        for entry in self._expiry_entries(user_id, alert_window_days):
            if entry.days_left is None:
                summary.no_expiry += 1
                continue
            if entry.days_left < 0:
                group = "expired"
            elif entry.status != ItemStatus.ACTIVE.value:
                continue
            elif entry.days_left <= CRITICAL_DAYS:
                group = "critical"
            elif entry.days_left <= EXPIRING_WINDOW_DAYS:
                group = "warning"
            else:
                group = "fresh"
            summary.items[group].append(entry)
        for group in EXPIRY_GROUPS:
            summary.items[group].sort(key=lambda e: (e.days_left, e.id))
            setattr(summary, group, len(summary.items[group]))
        summary.total = sum(len(v) for v in summary.items.values())
        summary.critical_percentage = _pct(summary.critical, summary.total)
        return summary

    # ── Reports ─────────────────────────────────────────────────────────────────

    def expense_report(self, user_id: int, start: date, end: date) -> ReportResult:
        """Spend (quantity * price) by purchase day and by category."""
        self._check_range(start, end)
        rows = items_core.list_in_window(
            user_id, "purchased", start.isoformat(), (end + timedelta(days=1)).isoformat()
        )
        total = sum(_value(r) for r in rows)
        daily = self._daily(rows, "purchase_date")
        # Items without a purchase date count on the day they were added.
        undated = [r for r in rows if not r.get("purchase_date")]
        if undated:
            merged: dict = {p.day: p for p in daily}
            for point in self._daily(undated, "created_at"):
                if point.day in merged:
                    merged[point.day].count += point.count
                    merged[point.day].value = round(merged[point.day].value + point.value, 2)
                else:
                    merged[point.day] = point
            daily = [merged[d] for d in sorted(merged)]
        return ReportResult(
            kind="expense",
            start=start.isoformat(),
            end=end.isoformat(),
            total_value=round(total, 2),
            item_count=len(rows),
            average_per_day=round(total / len(daily), 2) if daily else 0.0,
            categories=_shares(rows),
            daily=daily,
            top_items=_top_items(rows),
        )

    def waste_analysis(self, user_id: int, start: date, end: date) -> ReportResult:
        """Items that expired or were thrown away within the range.

        waste_percentage compares wasted items against items added in the
        same range.
        """
        self._check_range(start, end)
        lo, hi = self._utc_bounds(start, end)
        wasted = items_core.list_in_window(
            user_id, "status_changed", lo, hi,
            statuses=[ItemStatus.EXPIRED.value, ItemStatus.WASTED.value],
        )
        added = items_core.list_in_window(user_id, "created_at", lo, hi)
        waste_value = sum(_value(r) for r in wasted)
        categories = _shares(wasted)

        daily: Counter = Counter()
        values: defaultdict = defaultdict(float)
        for row in wasted:
            day = self._local_day(row.get("expired_at") or row.get("updated_at"))
            daily[day] += 1
            values[day] += _value(row)

        insights = []
        for share in categories:
            if share.count >= 3 or share.value > 50:
                insights.append(
                    f"You wasted {share.count} {share.category} items worth ${share.value:.2f}. "
                    f"Consider buying smaller quantities."
                )
        if wasted and not insights:
            insights.append("Waste is low this period. Keep up the good work!")

        return ReportResult(
            kind="waste",
            start=start.isoformat(),
            end=end.isoformat(),
            item_count=len(wasted),
            waste_value=round(waste_value, 2),
            waste_percentage=_pct(len(wasted), len(added)),
            categories=categories,
            daily=[DailyPoint(d, daily[d], round(values[d], 2)) for d in sorted(daily)],
            top_items=_top_items(wasted),
            insights=insights,
        )

    def consumption_patterns(
        self,
        user_id: int,
        window_days: int = DEFAULT_RANGE_DAYS,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ReportResult:
        """Consumed items over [start, end].

        Without explicit bounds the window is the trailing `window_days` days
        ending today; with both bounds the window length is their span.
        """
        if start is not None and end is not None:
            self._check_range(start, end)
            window_days = (end - start).days + 1
        else:
            if window_days < 1:
                raise ValueError("window_days must be >= 1")
            end = end or self.today()
            start = end - timedelta(days=window_days - 1)
        lo, hi = self._utc_bounds(start, end)
        consumed = items_core.list_in_window(
            user_id, "consumed_at", lo, hi, statuses=[ItemStatus.CONSUMED.value]
        )
        rate = len(consumed) / window_days
        categories = sorted(_shares(consumed), key=lambda s: (-s.count, s.category))

        insights = []
        if consumed:
            top = categories[0]
            insights.append(f"Most consumed category: {top.category} ({top.count} items)")
            if rate > 5:
                insights.append("High consumption rate. Buying staples in bulk could save money.")
            elif rate < 1:
                insights.append("Low consumption rate. Review purchases to avoid waste.")

        return ReportResult(
            kind="consumption",
            start=start.isoformat(),
            end=end.isoformat(),
            item_count=len(consumed),
            total_value=round(sum(_value(r) for r in consumed), 2),
            consumption_rate=round(rate, 2),
            average_per_day=round(rate, 2),
            categories=categories,
            daily=self._daily(consumed, "consumed_at"),
            top_items=_top_items(consumed),
            insights=insights,
        )

    def monthly_trends(self, user_id: int, months: int = 6) -> ReportResult:
        """Spend, item count and waste count per month for the last `months` months."""
        if months < 1:
            raise ValueError("months must be >= 1")
        today = self.today()
        first = today.replace(day=1)
        for _ in range(months - 1):
            first = (first - timedelta(days=1)).replace(day=1)

        purchased = items_core.list_in_window(
            user_id, "purchased", first.isoformat(), (today + timedelta(days=1)).isoformat()
        )
        lo, hi = self._utc_bounds(first, today)
        wasted = items_core.list_in_window(
            user_id, "status_changed", lo, hi,
            statuses=[ItemStatus.EXPIRED.value, ItemStatus.WASTED.value],
        )

        buckets: dict = {}
        cursor = first
        while cursor <= today:
            key = cursor.strftime("%Y-%m")
            buckets[key] = {"month": key, "spent": 0.0, "items": 0, "wasted": 0}
            cursor = (cursor + timedelta(days=32)).replace(day=1)
        for row in purchased:
            day = row.get("purchase_date") or self._local_day(row.get("created_at"))
            entry = buckets.get(day[:7]) if day else None
            if entry:
                entry["spent"] = round(entry["spent"] + _value(row), 2)
                entry["items"] += 1
        for row in wasted:
            day = self._local_day(row.get("expired_at") or row.get("updated_at"))
            entry = buckets.get(day[:7]) if day else None
            if entry:
                entry["wasted"] += 1

        monthly = list(buckets.values())
        total = sum(m["spent"] for m in monthly)
        return ReportResult(
            kind="monthly",
            start=first.isoformat(),
            end=today.isoformat(),
            total_value=round(total, 2),
            item_count=sum(m["items"] for m in monthly),
            average_per_day=round(total / ((today - first).days + 1), 2),
            monthly=monthly,
        )

    def category_spending(self, user_id: int, start: date, end: date) -> ReportResult:
        """Spend per category in the range, largest first."""
        self._check_range(start, end)
        groups = items_core.aggregate(
            user_id, group_by="category", date_field="purchased",
            start=start.isoformat(), end=(end + timedelta(days=1)).isoformat(),
        )
        total = sum(g["value"] for g in groups)
        return ReportResult(
            kind="categories",
            start=start.isoformat(),
            end=end.isoformat(),
            total_value=round(total, 2),
            item_count=sum(g["count"] for g in groups),
            categories=[
                CategoryShare(g["key"], g["count"], round(g["value"], 2), _pct(g["value"], total))
                for g in groups
            ],
        )

    def get_report(
        self,
        user_id: int,
        kind: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        days: Optional[int] = None,
    ) -> ReportResult:
        """Dispatch to a report by name. Missing bounds default to the last 30 days."""
        if kind not in REPORT_KINDS:
            raise ValueError(f"unknown report type {kind!r}")
        if kind == "monthly":
            months = 6
            if start is not None:
                today = self.today()
                months = max(1, (today.year - start.year) * 12 + today.month - start.month + 1)
            return self.monthly_trends(user_id, months=months)
        end = end or self.today()
        start = start or end - timedelta(days=(days or DEFAULT_RANGE_DAYS) - 1)
        if kind == "expense":
            return self.expense_report(user_id, start, end)
        if kind == "waste":
            return self.waste_analysis(user_id, start, end)
        if kind == "consumption":
            return self.consumption_patterns(user_id, start=start, end=end)
        return self.category_spending(user_id, start, end)


def export_csv(report: ReportResult) -> str:
    """Render a report as CSV: a summary block, then categories, then the daily series."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["report", report.kind])
    writer.writerow(["start", report.start])
    writer.writerow(["end", report.end])
    writer.writerow(["total_value", f"{report.total_value:.2f}"])
    writer.writerow(["item_count", report.item_count])
    if report.kind == "waste":
        writer.writerow(["waste_value", f"{report.waste_value:.2f}"])
        writer.writerow(["waste_percentage", f"{report.waste_percentage:.2f}"])
    if report.kind == "consumption":
        writer.writerow(["consumption_rate", f"{report.consumption_rate:.2f}"])
    writer.writerow([])
    writer.writerow(["category", "count", "value", "percentage"])
    for share in report.categories:
        writer.writerow([share.category, share.count, f"{share.value:.2f}", f"{share.percentage:.2f}"])
    if report.daily:
        writer.writerow([])
        writer.writerow(["day", "count", "value"])
        for point in report.daily:
            writer.writerow([point.day, point.count, f"{point.value:.2f}"])
    if report.monthly:
        writer.writerow([])
        writer.writerow(["month", "spent", "items", "wasted"])
        for m in report.monthly:
            writer.writerow([m["month"], f"{m['spent']:.2f}", m["items"], m["wasted"]])
    return buf.getvalue()
