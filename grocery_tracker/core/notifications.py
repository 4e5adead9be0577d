"""In-app notification storage: the dispatch record plus the read API.

Item alerts carry a dispatch key (user_id, related_item_id, alert_tier,
dispatch_day). A partial UNIQUE index on those columns makes create()
idempotent: a second insert for the same key is ignored and create()
returns None. exists() is the cheap pre-check the dispatcher runs first.

Payloads are stored as JSON tagged with a `kind` field and rebuilt into
ExpiryPayload / StockPayload / SystemPayload on read.
"""

import json
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from grocery_tracker.db.database import get_connection
from grocery_tracker.db.models import (
    ExpiryPayload,
    Notification,
    NotificationStatus,
    Payload,
    StockPayload,
    SystemPayload,
)

_PAYLOAD_KINDS = {
    "expiry": ExpiryPayload,
    "stock": StockPayload,
    "system": SystemPayload,
}


@dataclass
class NotificationPage:
    items: list[Notification]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _now_iso(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


def payload_to_json(payload: Optional[Payload]) -> Optional[str]:
    if payload is None:
        return None
    return json.dumps(asdict(payload))


def payload_from_json(text: Optional[str]) -> Optional[Payload]:
    """Rebuild a typed payload. Unknown or malformed payloads read as None."""
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    cls = _PAYLOAD_KINDS.get(data.pop("kind", None))
    if cls is None:
        return None
    try:
        return cls(**data)
    except TypeError:
        return None


def _from_row(row) -> Notification:
    data = dict(row)
    data["payload"] = payload_from_json(data.get("payload"))
    return Notification(**data)


def exists(user_id: int, item_id: Optional[int], tier: str, day: str) -> bool:
    """Return True if an alert for this item and tier was already recorded under `day`.

    item_id may be None for notifications not tied to an item, such as digests.
    """
    conn = get_connection()
    try:
        row = conn.execute(
            """SELECT 1 FROM notifications
               WHERE user_id = ? AND related_item_id IS ? AND alert_tier = ? AND dispatch_day = ?""",
            (user_id, item_id, tier, day),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


def create(notification: Notification) -> Optional[int]:
    """Insert a notification and return its ID, or None if its dispatch key already exists."""
    conn = get_connection()
    try:
        cursor = conn.execute(
            """INSERT OR IGNORE INTO notifications
               (user_id, type, priority, status, title, message, related_item_id,
                alert_tier, dispatch_day, payload, created_at, read_at, sent_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (notification.user_id, notification.type, notification.priority,
             notification.status, notification.title, notification.message,
             notification.related_item_id, notification.alert_tier,
             notification.dispatch_day, payload_to_json(notification.payload),
             notification.created_at or _now_iso(), notification.read_at,
             notification.sent_at),
        )
        conn.commit()
        return cursor.lastrowid if cursor.rowcount == 1 else None
    finally:
        conn.close()


def get(notification_id: int) -> Optional[Notification]:
    """Return a single notification by ID, or None if not found."""
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM notifications WHERE id = ?", (notification_id,)
        ).fetchone()
        return _from_row(row) if row else None
    finally:
        conn.close()


def mark_sent(notification_id: int, now: Optional[datetime] = None) -> None:
    """Record the first successful external delivery. Later calls keep the first stamp."""
    conn = get_connection()
    try:
        conn.execute(
            "UPDATE notifications SET sent_at = ? WHERE id = ? AND sent_at IS NULL",
            (_now_iso(now), notification_id),
        )
        conn.commit()
    finally:
        conn.close()


def list_notifications(
    user_id: int,
    status: Optional[str] = None,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> NotificationPage:
    """Return one page of a user's notifications, newest first.

    Archived notifications are hidden unless status='archived' is requested.
    """
    page = max(1, page)
    limit = max(1, min(limit, 100))
    clauses, args = ["user_id = ?"], [user_id]
    if status:
        clauses.append("status = ?")
        args.append(status)
    else:
        clauses.append("status != ?")
        args.append(NotificationStatus.ARCHIVED.value)
    if type:
        clauses.append("type = ?")
        args.append(type)
    if priority:
        clauses.append("priority = ?")
        args.append(priority)
    where = " AND ".join(clauses)

    conn = get_connection()
    try:
        total = conn.execute(
            f"SELECT COUNT(*) AS n FROM notifications WHERE {where}", args
        ).fetchone()["n"]
        rows = conn.execute(
            f"""SELECT * FROM notifications WHERE {where}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            (*args, limit, (page - 1) * limit),
        ).fetchall()
        return NotificationPage(
            items=[_from_row(row) for row in rows], total=total, page=page, limit=limit
        )
    finally:
        conn.close()


def list_since(user_id: int, since: str, types: Optional[Iterable[str]] = None) -> list[Notification]:
    """Return a user's notifications created at or after `since`, oldest first."""
    sql = "SELECT * FROM notifications WHERE user_id = ? AND created_at >= ?"
    args = [user_id, since]
    if types:
        types = list(types)
        sql += f" AND type IN ({','.join('?' * len(types))})"
        args.extend(types)
    sql += " ORDER BY created_at, id"
    conn = get_connection()
    try:
        return [_from_row(row) for row in conn.execute(sql, args).fetchall()]
    finally:
        conn.close()


def unread_count(user_id: int) -> int:
    conn = get_connection()
    try:
        return conn.execute(
            "SELECT COUNT(*) AS n FROM notifications WHERE user_id = ? AND status = 'unread'",
            (user_id,),
        ).fetchone()["n"]
    finally:
        conn.close()


def mark_read(notification_id: int, user_id: int, now: Optional[datetime] = None) -> bool:
    """Mark one of the user's notifications read. Returns False if it doesn't exist."""
    conn = get_connection()
    try:
        cursor = conn.execute(
            """UPDATE notifications SET status = 'read', read_at = COALESCE(read_at, ?)
               WHERE id = ? AND user_id = ? AND status != 'archived'""",
            (_now_iso(now), notification_id, user_id),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def mark_all_read(user_id: int, now: Optional[datetime] = None) -> int:
    """Mark every unread notification of the user read. Returns the number updated."""
    conn = get_connection()
    try:
        cursor = conn.execute(
            "UPDATE notifications SET status = 'read', read_at = ? WHERE user_id = ? AND status = 'unread'",
            (_now_iso(now), user_id),
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def archive(notification_id: int, user_id: int) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute(
            "UPDATE notifications SET status = 'archived' WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def delete(notification_id: int, user_id: int) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute(
            "DELETE FROM notifications WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def delete_older_than(statuses: Iterable[str], older_than: str) -> int:
    """Delete notifications in `statuses` created before the `older_than` timestamp.

    Unread notifications are never passed here by the retention job; the
    status filter is mandatory so a blanket purge is not expressible.
    """
    statuses = list(statuses)
    if not statuses:
        raise ValueError("at least one status is required")
    conn = get_connection()
    try:
        cursor = conn.execute(
            f"""DELETE FROM notifications
                WHERE status IN ({','.join('?' * len(statuses))}) AND created_at < ?""",
            (*statuses, older_than),
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()
