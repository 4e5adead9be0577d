"""Expiry classification — maps an expiry date to an urgency bucket.

Days are counted on calendar dates in the timezone of `now`: an item
expiring tomorrow is 'tomorrow' at 00:01 and at 23:59 alike. The functions
here are pure; the caller supplies the clock.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from grocery_tracker.db.models import Bucket

ExpiryValue = Union[date, datetime, str, None]


@dataclass(frozen=True)
class Classification:
    bucket: Bucket
    days_left: Optional[int]


def parse_expiry(value: ExpiryValue, tz=None) -> Optional[date]:
    """Normalise a stored expiry value to a date.

    Accepts a date, a datetime (converted to `tz` when given and aware),
    an ISO date string, or an ISO timestamp string. Empty values return None.
    Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if tz is not None and value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        return parse_expiry(datetime.fromisoformat(text.replace("Z", "+00:00")), tz)
    raise ValueError(f"unsupported expiry value: {value!r}")


def days_until(expiry: date, now: datetime) -> int:
    """Calendar days from today(now) to `expiry`; negative once it has passed."""
    return (expiry - now.date()).days


def classify(expiry_date: ExpiryValue, now: datetime, alert_window_days: int) -> Classification:
    """Return the bucket and days left for an expiry date.

    Rules, first match wins: days_left < 0 expired, 0 today, 1 tomorrow,
    <= alert_window_days soon, otherwise fresh. A missing expiry date is
    always fresh with days_left None.
    """
    if alert_window_days < 0:
        raise ValueError("alert_window_days must be >= 0")
    expiry = parse_expiry(expiry_date, now.tzinfo)
    if expiry is None:
        return Classification(Bucket.FRESH, None)

    days_left = days_until(expiry, now)
    if days_left < 0:
        bucket = Bucket.EXPIRED
    elif days_left == 0:
        bucket = Bucket.TODAY
    elif days_left == 1:
        bucket = Bucket.TOMORROW
    elif days_left <= alert_window_days:
        bucket = Bucket.SOON
    else:
        bucket = Bucket.FRESH
    return Classification(bucket, days_left)
