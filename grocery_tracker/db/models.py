"""Dataclass models for all database entities.

Each table-backed class maps 1:1 to a database table. Fields use Optional
types for nullable columns. Dates are ISO YYYY-MM-DD strings; timestamps
are ISO-8601 UTC strings. These are plain data containers with no business
logic; the enums name the closed value sets stored in TEXT columns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Bucket(str, Enum):
    """Urgency tier of an item relative to its expiry date."""
    EXPIRED = "expired"
    TODAY = "today"
    TOMORROW = "tomorrow"
    SOON = "soon"
    FRESH = "fresh"


class ItemStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONSUMED = "consumed"
    WASTED = "wasted"


class NotificationType(str, Enum):
    EXPIRY_WARNING = "expiry_warning"
    EXPIRY_ALERT = "expiry_alert"
    LOW_STOCK = "low_stock"
    RESTOCK = "restock"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"


@dataclass
class UserPreferences:
    """Per-user delivery switches and the 'soon' alert window in days."""
    email_notifications: bool = True
    push_notifications: bool = True
    expiry_alert_days: int = 3


@dataclass
class User:
    """A tracker account. push_token is the device token for the push gateway."""

    id: Optional[int]
    name: str
    email: Optional[str] = None
    push_token: Optional[str] = None
    is_active: bool = True
    email_notifications: bool = True
    push_notifications: bool = True
    expiry_alert_days: int = 3
    created_at: Optional[str] = None

    @property
    def preferences(self) -> UserPreferences:
        return UserPreferences(
            email_notifications=bool(self.email_notifications),
            push_notifications=bool(self.push_notifications),
            expiry_alert_days=int(self.expiry_alert_days),
        )


@dataclass
class Category:
    id: Optional[int]
    name: str
    user_id: Optional[int] = None
    color: Optional[str] = None


@dataclass
class GroceryItem:
    """A tracked grocery item.

    status moves from 'active' to one of 'expired', 'consumed' or 'wasted'
    and never returns to 'active'. expiry_date may be None for items that
    do not spoil.
    """

    id: Optional[int]
    user_id: int
    name: str
    quantity: float = 1.0
    unit: Optional[str] = None
    price: float = 0.0
    category_id: Optional[int] = None
    purchase_date: Optional[str] = None
    expiry_date: Optional[str] = None
    status: str = ItemStatus.ACTIVE.value
    low_stock_threshold: float = 5
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    consumed_at: Optional[str] = None
    expired_at: Optional[str] = None


@dataclass
class ExpiryPayload:
    item_name: str
    expiry_date: str
    days_left: int
    bucket: str
    kind: str = field(default="expiry", init=False)


@dataclass
class StockPayload:
    item_name: str
    quantity: float
    unit: Optional[str] = None
    threshold: Optional[float] = None
    kind: str = field(default="stock", init=False)


@dataclass
class SystemPayload:
    text: str
    extra: dict = field(default_factory=dict)
    kind: str = field(default="system", init=False)


Payload = Union[ExpiryPayload, StockPayload, SystemPayload]


@dataclass
class Notification:
    """An in-app notification.

    For item alerts, (user_id, related_item_id, alert_tier, dispatch_day) is
    the dispatch record: the database holds at most one row per key.
    dispatch_day is the local calendar day for expiry alerts and
    'qty:<quantity>' for stock alerts. Digests record the week's last day
    with no related item.
    """

    id: Optional[int]
    user_id: int
    type: str
    title: str
    message: Optional[str] = None
    priority: str = Priority.MEDIUM.value
    status: str = NotificationStatus.UNREAD.value
    related_item_id: Optional[int] = None
    alert_tier: Optional[str] = None
    dispatch_day: Optional[str] = None
    payload: Optional[Payload] = None
    created_at: Optional[str] = None
    read_at: Optional[str] = None
    sent_at: Optional[str] = None
