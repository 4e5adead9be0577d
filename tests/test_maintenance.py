from datetime import timedelta, timezone

from grocery_tracker.config import Settings
from grocery_tracker.core import items as items_core
from grocery_tracker.core import maintenance
from grocery_tracker.core import notifications as notifications_core
from grocery_tracker.core import users as users_core
from grocery_tracker.db.models import GroceryItem, Notification, User


def _user():
    return users_core.add(User(id=None, name="Lee"))


def _item(user_id, expiry):
    return items_core.add(GroceryItem(id=None, user_id=user_id, name="Item", expiry_date=expiry))


def test_auto_expire_is_idempotent(db, clock):
    user_id = _user()
    overdue = _item(user_id, "2026-10-17")
    today = _item(user_id, "2026-10-18")

    assert maintenance.auto_expire(clock.now) == 1
    assert maintenance.auto_expire(clock.now) == 0
    assert items_core.get(overdue).status == "expired"
    assert items_core.get(overdue).expired_at is not None
    assert items_core.get(today).status == "active"


def test_auto_expire_never_revives_or_overrides_retired_items(db, clock):
    user_id = _user()
    eaten = _item(user_id, "2026-10-10")
    items_core.mark_consumed(eaten, now=clock.now)

    maintenance.auto_expire(clock.now)

    assert items_core.get(eaten).status == "consumed"


def _note(user_id, status, age_days, clock):
    created = (clock.now - timedelta(days=age_days)).astimezone(timezone.utc).isoformat(timespec="seconds")
    return notifications_core.create(Notification(
        id=None, user_id=user_id, type="system", title=f"{status} {age_days}d",
        status=status, created_at=created,
    ))


def test_cleanup_filters_by_status_and_age(db, clock):
    user_id = _user()
    old_read = _note(user_id, "read", 45, clock)
    old_archived = _note(user_id, "archived", 31, clock)
    old_unread = _note(user_id, "unread", 90, clock)
    new_read = _note(user_id, "read", 5, clock)

    old_expired = _item(user_id, "2026-06-01")
    items_core.mark_expired([old_expired], now=clock.now - timedelta(days=100))
    new_expired = _item(user_id, "2026-10-01")
    items_core.mark_expired([new_expired], now=clock.now - timedelta(days=10))
    old_consumed = _item(user_id, None)
    items_core.mark_consumed(old_consumed, now=clock.now - timedelta(days=61))
    old_active = items_core.add(GroceryItem(id=None, user_id=user_id, name="Salt"),
                                now=clock.now - timedelta(days=400))

    result = maintenance.cleanup(clock.now, Settings())

    assert result.notifications_deleted == 2
    assert result.expired_items_deleted == 1
    assert result.consumed_items_deleted == 1
    assert notifications_core.get(old_read) is None
    assert notifications_core.get(old_archived) is None
    assert notifications_core.get(old_unread) is not None
    assert notifications_core.get(new_read) is not None
    assert items_core.get(old_expired) is None
    assert items_core.get(new_expired) is not None
    assert items_core.get(old_consumed) is None
    assert items_core.get(old_active) is not None


def test_cleanup_prunes_old_wasted_items(db, clock):
    user_id = _user()
    old_wasted = _item(user_id, None)
    items_core.mark_wasted(old_wasted, now=clock.now - timedelta(days=400))
    recent_wasted = _item(user_id, None)
    items_core.mark_wasted(recent_wasted, now=clock.now - timedelta(days=20))

    result = maintenance.cleanup(clock.now, Settings())

    assert result.wasted_items_deleted == 1
    assert items_core.get(old_wasted) is None
    assert items_core.get(recent_wasted).status == "wasted"
