"""Seed the demo database with fake data if it's empty."""
from datetime import datetime, timedelta, timezone

from grocery_tracker.config import Settings
from grocery_tracker.core import items as items_core, users as users_core
from grocery_tracker.core.channels import ChannelSender
from grocery_tracker.core.dispatcher import NotificationDispatcher
from grocery_tracker.db.models import Category, GroceryItem, User

DEMO_USER = User(id=None, name="Demo Shopper", email=None,
                 email_notifications=False, push_notifications=False, expiry_alert_days=3)

DEMO_CATEGORIES = ["Dairy", "Produce", "Meat", "Bakery", "Dry Goods"]

# (name, category, quantity, unit, price, days until expiry or None, low stock threshold)
DEMO_ITEMS = [
    ("Whole Milk", "Dairy", 1, "gallon", 3.99, 0, 1),
    ("Greek Yogurt", "Dairy", 4, "cups", 1.25, 1, 2),
    ("Cheddar", "Dairy", 1, "block", 5.49, 12, 1),
    ("Avocados", "Produce", 3, "whole", 1.50, 2, 2),
    ("Spinach", "Produce", 1, "bag", 3.29, 3, 1),
    ("Bananas", "Produce", 6, "whole", 0.25, 5, 3),
    ("Chicken Breast", "Meat", 2, "lbs", 4.99, 4, 1),
    ("Ground Beef", "Meat", 1, "lb", 5.99, 9, 1),
    ("Sourdough", "Bakery", 1, "loaf", 6.00, 2, 1),
    ("Rice", "Dry Goods", 2, "lbs", 2.10, None, 5),
    ("Pasta", "Dry Goods", 0, "boxes", 1.79, None, 2),
]

# (name, category, quantity, unit, price, days ago, outcome)
DEMO_HISTORY = [
    ("Strawberries", "Produce", 1, "pint", 4.49, 6, "wasted"),
    ("Lettuce", "Produce", 1, "head", 2.19, 5, "wasted"),
    ("Eggs", "Dairy", 12, "count", 0.35, 4, "consumed"),
    ("Bagels", "Bakery", 6, "count", 0.90, 3, "consumed"),
    ("Salmon", "Meat", 1, "lb", 11.99, 2, "consumed"),
]


def seed_if_empty():
    """Seed demo DB if it has no users yet."""
    if users_core.list_active_users():
        return  # Already seeded

    user_id = users_core.add(DEMO_USER)
    category_ids = {
        name: items_core.add_category(Category(id=None, name=name, user_id=user_id))
        for name in DEMO_CATEGORIES
    }

    today = datetime.now(timezone.utc).date()
    for name, category, qty, unit, price, days, threshold in DEMO_ITEMS:
        items_core.add(GroceryItem(
            id=None, user_id=user_id, name=name, quantity=qty, unit=unit, price=price,
            category_id=category_ids[category],
            purchase_date=str(today - timedelta(days=2)),
            expiry_date=str(today + timedelta(days=days)) if days is not None else None,
            low_stock_threshold=threshold,
        ))

    now = datetime.now(timezone.utc)
    for name, category, qty, unit, price, days_ago, outcome in DEMO_HISTORY:
        when = now - timedelta(days=days_ago)
        item_id = items_core.add(GroceryItem(
            id=None, user_id=user_id, name=name, quantity=qty, unit=unit, price=price,
            category_id=category_ids[category],
            purchase_date=str((when - timedelta(days=3)).date()),
            expiry_date=str(when.date()),
        ), now=when - timedelta(days=3))
        if outcome == "consumed":
            items_core.mark_consumed(item_id, now=when)
        else:
            items_core.mark_wasted(item_id, now=when)

    # Populate the notification feed the same way the daily job would.
    dispatcher = NotificationDispatcher(ChannelSender(Settings()))
    dispatcher.run_for_user(users_core.get(user_id))
