from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from grocery_tracker.core.classifier import classify, parse_expiry
from grocery_tracker.db.models import Bucket

NOW = datetime(2026, 10, 18, 10, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("expiry, bucket, days_left", [
    ("2026-10-16", Bucket.EXPIRED, -2),
    ("2026-10-17", Bucket.EXPIRED, -1),
    ("2026-10-18", Bucket.TODAY, 0),
    ("2026-10-19", Bucket.TOMORROW, 1),
    ("2026-10-20", Bucket.SOON, 2),
    ("2026-10-21", Bucket.SOON, 3),
    ("2026-10-22", Bucket.FRESH, 4),
])
def test_classify_buckets_with_three_day_window(expiry, bucket, days_left):
    result = classify(expiry, NOW, 3)
    assert result.bucket == bucket
    assert result.days_left == days_left


def test_missing_expiry_is_fresh():
    result = classify(None, NOW, 3)
    assert result.bucket == Bucket.FRESH
    assert result.days_left is None


def test_zero_window_still_flags_tomorrow():
    assert classify("2026-10-19", NOW, 0).bucket == Bucket.TOMORROW
    assert classify("2026-10-20", NOW, 0).bucket == Bucket.FRESH


def test_time_of_day_does_not_change_bucket():
    early = datetime(2026, 10, 18, 0, 1, tzinfo=timezone.utc)
    late = datetime(2026, 10, 18, 23, 59, tzinfo=timezone.utc)
    assert classify("2026-10-19", early, 3) == classify("2026-10-19", late, 3)


def test_classify_is_deterministic():
    assert classify(date(2026, 10, 20), NOW, 3) == classify(date(2026, 10, 20), NOW, 3)


def test_datetime_expiry_uses_local_calendar_day():
    new_york = ZoneInfo("America/New_York")
    now = datetime(2026, 10, 18, 20, 0, tzinfo=new_york)
    # 02:00 UTC on the 19th is still the evening of the 18th in New York.
    expiry = datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc)
    assert classify(expiry, now, 3).bucket == Bucket.TODAY


def test_parse_expiry_accepts_timestamps():
    assert parse_expiry("2026-10-19T08:00:00Z") == date(2026, 10, 19)
    assert parse_expiry("") is None


@pytest.mark.parametrize("bad", ["not-a-date", "31/12/2026", "2026-13-01", 20261019])
def test_parse_expiry_rejects_malformed_values(bad):
    with pytest.raises(ValueError):
        parse_expiry(bad)


def test_negative_window_is_rejected():
    with pytest.raises(ValueError):
        classify("2026-10-19", NOW, -1)
