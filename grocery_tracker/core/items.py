"""Grocery item storage: lookups for the expiry engine plus lifecycle updates.

Items only ever leave the 'active' status; every UPDATE that changes status
is guarded with `status = 'active'` so a retired item is never revived.
Timestamps are written as ISO UTC strings; callers pass `now` so jobs and
tests control the clock.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from grocery_tracker.db.database import get_connection
from grocery_tracker.db.models import Category, GroceryItem, ItemStatus

# Window columns the reporting queries may filter on. Values are SQL
# expressions over the `i` alias; the keys are the only accepted inputs.
DATE_FIELDS = {
    "purchased": "COALESCE(i.purchase_date, substr(i.created_at, 1, 10))",
    "created_at": "i.created_at",
    "consumed_at": "i.consumed_at",
    "status_changed": "COALESCE(i.expired_at, i.updated_at)",
}

_GROUP_BY = {
    "category": "COALESCE(c.name, 'Uncategorized')",
    "status": "i.status",
}


def _now_iso(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


def add(item: GroceryItem, now: Optional[datetime] = None) -> int:
    """Insert a new item and return its ID. created_at/updated_at default to now."""
    if item.quantity is not None and item.quantity < 0:
        raise ValueError("quantity must be >= 0")
    stamp = _now_iso(now)
    conn = get_connection()
    try:
        cursor = conn.execute(
            """INSERT INTO grocery_items
               (user_id, name, quantity, unit, price, category_id, purchase_date, expiry_date,
                status, low_stock_threshold, created_at, updated_at, consumed_at, expired_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (item.user_id, item.name, item.quantity, item.unit, item.price or 0,
             item.category_id, item.purchase_date, item.expiry_date, item.status,
             item.low_stock_threshold, item.created_at or stamp, item.updated_at or stamp,
             item.consumed_at, item.expired_at),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def get(item_id: int) -> Optional[GroceryItem]:
    """Return a single item by ID, or None if not found."""
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM grocery_items WHERE id = ?", (item_id,)).fetchone()
        return GroceryItem(**dict(row)) if row else None
    finally:
        conn.close()


def list_active_items(user_id: int) -> list[GroceryItem]:
    """Return a user's active items, soonest expiry first (undated items last)."""
    conn = get_connection()
    try:
        rows = conn.execute(
            """SELECT * FROM grocery_items
               WHERE user_id = ? AND status = 'active'
               ORDER BY expiry_date IS NULL, expiry_date, id""",
            (user_id,),
        ).fetchall()
        return [GroceryItem(**dict(row)) for row in rows]
    finally:
        conn.close()


def list_items(user_id: int, status: Optional[str] = None) -> list[GroceryItem]:
    conn = get_connection()
    try:
        if status:
            rows = conn.execute(
                "SELECT * FROM grocery_items WHERE user_id = ? AND status = ? ORDER BY id",
                (user_id, status),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM grocery_items WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [GroceryItem(**dict(row)) for row in rows]
    finally:
        conn.close()


def find_overdue(today: str) -> list[int]:
    """Return IDs of active items whose expiry_date is before `today` (YYYY-MM-DD)."""
    conn = get_connection()
    try:
        rows = conn.execute(
            """SELECT id FROM grocery_items
               WHERE status = 'active' AND expiry_date IS NOT NULL AND expiry_date < ?
               ORDER BY id""",
            (today,),
        ).fetchall()
        return [row["id"] for row in rows]
    finally:
        conn.close()


def mark_expired(ids: Iterable[int], now: Optional[datetime] = None) -> int:
    """Move the given active items to 'expired'. Returns how many rows changed.

    Items already retired are left untouched, so repeated calls are no-ops.
    """
    ids = list(ids)
    if not ids:
        return 0
    stamp = _now_iso(now)
    placeholders = ",".join("?" * len(ids))
    conn = get_connection()
    try:
        cursor = conn.execute(
            f"""UPDATE grocery_items SET status = 'expired', expired_at = ?, updated_at = ?
                WHERE status = 'active' AND id IN ({placeholders})""",
            (stamp, stamp, *ids),
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def mark_consumed(item_id: int, now: Optional[datetime] = None) -> bool:
    """Retire an active item as consumed. Returns False if it was not active."""
    stamp = _now_iso(now)
    conn = get_connection()
    try:
        cursor = conn.execute(
            """UPDATE grocery_items SET status = 'consumed', consumed_at = ?, updated_at = ?
               WHERE id = ? AND status = 'active'""",
            (stamp, stamp, item_id),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def mark_wasted(item_id: int, now: Optional[datetime] = None) -> bool:
    """Retire an active item as wasted. Returns False if it was not active."""
    stamp = _now_iso(now)
    conn = get_connection()
    try:
        cursor = conn.execute(
            """UPDATE grocery_items SET status = 'wasted', updated_at = ?
               WHERE id = ? AND status = 'active'""",
            (stamp, item_id),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def delete_retired(status: str, older_than: str) -> int:
    """Delete items in a retired status whose retirement is older than `older_than`.

    Expired items age from expired_at, consumed items from consumed_at; both
    fall back to updated_at for rows written before those columns existed.
    Returns the number of deleted rows.
    """
    if status == ItemStatus.EXPIRED.value:
        age_col = "COALESCE(expired_at, updated_at)"
    elif status == ItemStatus.CONSUMED.value:
        age_col = "COALESCE(consumed_at, updated_at)"
    elif status == ItemStatus.WASTED.value:
        age_col = "updated_at"
    else:
        raise ValueError(f"refusing to delete items with status {status!r}")
    conn = get_connection()
    try:
        cursor = conn.execute(
            f"DELETE FROM grocery_items WHERE status = ? AND {age_col} < ?",
            (status, older_than),
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def _window_clause(date_field: str, start: Optional[str], end: Optional[str]) -> tuple[str, list]:
    if date_field not in DATE_FIELDS:
        raise ValueError(f"unknown date field {date_field!r}")
    expr = DATE_FIELDS[date_field]
    clauses, params = [], []
    if start is not None:
        clauses.append(f"{expr} >= ?")
        params.append(start)
    if end is not None:
        clauses.append(f"{expr} < ?")
        params.append(end)
    return " AND ".join(clauses), params


def list_in_window(
    user_id: int,
    date_field: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
) -> list[dict]:
    """Return item rows (plus category_name) whose `date_field` is in [start, end).

    Bounds are compared as strings, so they must use the same format as the
    column: YYYY-MM-DD for 'purchased', ISO UTC timestamps otherwise.
    """
    where, params = _window_clause(date_field, start, end)
    sql = """SELECT i.*, COALESCE(c.name, 'Uncategorized') AS category_name
             FROM grocery_items i LEFT JOIN categories c ON c.id = i.category_id
             WHERE i.user_id = ?"""
    args = [user_id]
    if where:
        sql += " AND " + where
        args.extend(params)
    if statuses:
        statuses = list(statuses)
        sql += f" AND i.status IN ({','.join('?' * len(statuses))})"
        args.extend(statuses)
    sql += " ORDER BY i.id"
    conn = get_connection()
    try:
        return [dict(row) for row in conn.execute(sql, args).fetchall()]
    finally:
        conn.close()


def aggregate(
    user_id: int,
    group_by: str = "category",
    date_field: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    statuses: Optional[Iterable[str]] = None,
) -> list[dict]:
    """Return per-group totals: key, count, quantity and value (sum of quantity * price)."""
    if group_by not in _GROUP_BY:
        raise ValueError(f"unknown group {group_by!r}")
    key = _GROUP_BY[group_by]
    sql = f"""SELECT {key} AS key, COUNT(*) AS count,
                     COALESCE(SUM(i.quantity), 0) AS quantity,
                     COALESCE(SUM(i.quantity * COALESCE(i.price, 0)), 0) AS value
              FROM grocery_items i LEFT JOIN categories c ON c.id = i.category_id
              WHERE i.user_id = ?"""
    args = [user_id]
    if date_field:
        where, params = _window_clause(date_field, start, end)
        if where:
            sql += " AND " + where
            args.extend(params)
    if statuses:
        statuses = list(statuses)
        sql += f" AND i.status IN ({','.join('?' * len(statuses))})"
        args.extend(statuses)
    sql += f" GROUP BY {key} ORDER BY value DESC, key"
    conn = get_connection()
    try:
        return [dict(row) for row in conn.execute(sql, args).fetchall()]
    finally:
        conn.close()


def add_category(category: Category) -> int:
    """Insert a new category and return its ID."""
    conn = get_connection()
    try:
        cursor = conn.execute(
            "INSERT INTO categories (user_id, name, color) VALUES (?, ?, ?)",
            (category.user_id, category.name, category.color),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()
