from dataclasses import replace
from datetime import date, timedelta

import pytest

from conftest import FakeChannels
from grocery_tracker.core import items as items_core
from grocery_tracker.core import notifications as notifications_core
from grocery_tracker.core import users as users_core
from grocery_tracker.core.dispatcher import NotificationDispatcher
from grocery_tracker.db.models import Bucket, ExpiryPayload, GroceryItem, StockPayload, SystemPayload, User

TODAY = date(2026, 10, 18)


def _user(**prefs) -> User:
    user_id = users_core.add(User(id=None, name="Sam", email="sam@example.com",
                                  push_token="tok-1", **prefs))
    return users_core.get(user_id)


def _item(user, name, days=None, quantity=10, threshold=5, expiry=None) -> GroceryItem:
    if expiry is None and days is not None:
        expiry = str(TODAY + timedelta(days=days))
    item_id = items_core.add(GroceryItem(
        id=None, user_id=user.id, name=name, quantity=quantity, price=2.0,
        expiry_date=expiry, low_stock_threshold=threshold,
    ))
    return items_core.get(item_id)


def _all(user):
    return notifications_core.list_notifications(user.id, limit=100).items


@pytest.fixture
def dispatcher(db, channels, clock):
    return NotificationDispatcher(channels, clock=clock)


def test_second_run_same_day_creates_no_duplicates(dispatcher, channels):
    user = _user()
    _item(user, "Milk", days=0)

    first = dispatcher.run_for_user(user)
    second = dispatcher.run_for_user(user)

    assert first.alerts_sent == 1
    assert second.alerts_sent == 0
    assert second.skipped == 1
    assert len(_all(user)) == 1
    assert len(channels.pushes) == 1
    assert len(channels.emails) == 1


def test_item_staying_soon_alerts_once_per_day(dispatcher, clock):
    user = _user(expiry_alert_days=7)
    _item(user, "Cheese", days=5)

    dispatcher.run_for_user(user)
    clock.advance(days=1)
    dispatcher.run_for_user(user)
    dispatcher.run_for_user(user)

    alerts = _all(user)
    assert len(alerts) == 2
    assert {n.dispatch_day for n in alerts} == {"2026-10-18", "2026-10-19"}
    assert all(n.alert_tier == Bucket.SOON.value for n in alerts)


def test_priority_and_type_follow_bucket(dispatcher):
    user = _user()
    _item(user, "Milk", days=0)
    _item(user, "Bread", days=1)
    _item(user, "Eggs", days=3)

    dispatcher.run_for_user(user, include_stock=False)

    by_tier = {n.alert_tier: n for n in _all(user)}
    assert by_tier["today"].priority == "urgent"
    assert by_tier["today"].type == "expiry_alert"
    assert by_tier["tomorrow"].priority == "high"
    assert by_tier["tomorrow"].type == "expiry_warning"
    assert by_tier["soon"].priority == "medium"
    assert by_tier["soon"].type == "expiry_warning"


def test_expired_fresh_and_undated_items_are_not_notified(dispatcher):
    user = _user()
    _item(user, "Old soup", days=-2)
    _item(user, "Rice", days=30)
    _item(user, "Salt", days=None)

    result = dispatcher.run_for_user(user, include_stock=False)

    assert result.alerts_sent == 0
    assert _all(user) == []


def test_push_failure_does_not_block_email(db, clock):
    channels = FakeChannels(push_ok=False)
    dispatcher = NotificationDispatcher(channels, clock=clock)
    user = _user()
    _item(user, "Milk", days=0)

    result = dispatcher.run_for_user(user, include_stock=False)

    assert result.alerts_sent == 1
    assert result.channel_failures == 1
    assert len(channels.emails) == 1
    stored = _all(user)[0]
    assert stored.sent_at is not None


def test_push_exception_is_contained(db, clock):
    channels = FakeChannels(push_raises=RuntimeError("boom"))
    dispatcher = NotificationDispatcher(channels, clock=clock)
    user = _user()
    _item(user, "Milk", days=0)

    result = dispatcher.run_for_user(user, include_stock=False)

    assert result.alerts_sent == 1
    assert result.channel_failures == 1
    assert len(channels.emails) == 1


def test_all_channels_failing_still_persists_notification(db, clock):
    channels = FakeChannels(push_ok=False, email_ok=False)
    dispatcher = NotificationDispatcher(channels, clock=clock)
    user = _user()
    _item(user, "Milk", days=0)

    dispatcher.run_for_user(user, include_stock=False)

    stored = _all(user)
    assert len(stored) == 1
    assert stored[0].sent_at is None
    # Not retried on the next run either.
    dispatcher.run_for_user(user, include_stock=False)
    assert len(channels.pushes) == 1


def test_preferences_select_channels(dispatcher, channels):
    user = _user(push_notifications=False)
    _item(user, "Milk", days=0)

    dispatcher.run_for_user(user, include_stock=False)

    assert channels.pushes == []
    assert len(channels.emails) == 1


def test_bucket_filter_limits_dispatch(dispatcher):
    user = _user()
    _item(user, "Milk", days=0)
    _item(user, "Bread", days=1)

    result = dispatcher.run_for_user(user, buckets={Bucket.TODAY}, include_stock=False)

    assert result.alerts_sent == 1
    assert [n.alert_tier for n in _all(user)] == ["today"]


def test_stock_alerts(dispatcher):
    user = _user()
    _item(user, "Apples", days=None, quantity=2, threshold=5)
    _item(user, "Pasta", days=None, quantity=0, threshold=2)
    _item(user, "Rice", days=None, quantity=9, threshold=5)

    result = dispatcher.run_for_user(user)
    again = dispatcher.run_for_user(user)

    by_type = {n.type: n for n in _all(user)}
    assert set(by_type) == {"low_stock", "restock"}
    assert by_type["low_stock"].priority == "medium"
    assert by_type["restock"].priority == "low"
    assert isinstance(by_type["low_stock"].payload, StockPayload)
    assert result.alerts_sent == 2
    assert again.alerts_sent == 0


def test_malformed_item_is_skipped(dispatcher):
    user = _user()
    _item(user, "Mystery", expiry="31/12/2026")
    _item(user, "Milk", days=0)

    result = dispatcher.run_for_user(user, include_stock=False)

    assert result.invalid == 1
    assert result.alerts_sent == 1


def test_payload_round_trips_as_typed_variant(dispatcher):
    user = _user()
    _item(user, "Yogurt", days=2)

    dispatcher.run_for_user(user, include_stock=False)

    payload = _all(user)[0].payload
    assert isinstance(payload, ExpiryPayload)
    assert payload.days_left == 2
    assert payload.bucket == "soon"
    assert payload.kind == "expiry"


def test_store_rejects_duplicate_dispatch_key(db):
    from grocery_tracker.db.models import Notification
    user = _user()
    item = _item(user, "Milk", days=0)
    note = Notification(id=None, user_id=user.id, type="expiry_alert", title="Milk",
                        related_item_id=item.id, alert_tier="today", dispatch_day="2026-10-18")

    assert notifications_core.create(note) is not None
    assert notifications_core.create(note) is None
    assert notifications_core.exists(user.id, item.id, "today", "2026-10-18")


def test_unchanged_low_stock_alerts_once_across_days(dispatcher, channels, clock):
    user = _user()
    cheese = _item(user, "Cheese", expiry="2027-03-01", quantity=1, threshold=5)

    for _ in range(3):
        dispatcher.run_for_user(user)
        clock.advance(days=1)

    assert [n.type for n in _all(user)] == ["low_stock"]
    assert _all(user)[0].dispatch_day == "qty:1"
    assert len(channels.pushes) == 1

    outcome = dispatcher.evaluate_stock(user, replace(cheese, quantity=0.5))

    assert outcome.status == "sent"
    assert len(channels.pushes) == 2


def test_weekly_digest_is_recorded_in_app_once_per_day(db, channels, clock):
    from grocery_tracker.core.analytics import Aggregator
    dispatcher = NotificationDispatcher(channels, clock=clock, aggregator=Aggregator(clock=clock))
    user = _user(email_notifications=False)

    assert dispatcher.send_weekly_digest(user) is None
    assert dispatcher.send_weekly_digest(user) is None

    feed = _all(user)
    assert [n.type for n in feed] == ["system"]
    assert isinstance(feed[0].payload, SystemPayload)
    assert feed[0].payload.extra["end"] == "2026-10-18"
    assert channels.emails == []
