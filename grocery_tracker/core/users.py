"""User accounts and notification preferences.

The engine only reads users: background jobs list the active ones and the
dispatcher reads each user's delivery preferences and contact details.
add() and deactivate() exist for seeding and administration.
"""

from typing import Optional

from grocery_tracker.db.database import get_connection
from grocery_tracker.db.models import User, UserPreferences


def list_active_users() -> list[User]:
    """Return all active users ordered by ID."""
    conn = get_connection()
    try:
        rows = conn.execute("SELECT * FROM users WHERE is_active = 1 ORDER BY id").fetchall()
        return [User(**dict(row)) for row in rows]
    finally:
        conn.close()


def get(user_id: int) -> Optional[User]:
    """Return a single user by ID, or None if not found."""
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User(**dict(row)) if row else None
    finally:
        conn.close()


def get_preferences(user_id: int) -> Optional[UserPreferences]:
    user = get(user_id)
    return user.preferences if user else None


def add(user: User) -> int:
    """Insert a new user and return its ID."""
    if user.expiry_alert_days < 0:
        raise ValueError("expiry_alert_days must be >= 0")
    conn = get_connection()
    try:
        cursor = conn.execute(
            """INSERT INTO users (name, email, push_token, is_active, email_notifications,
                                  push_notifications, expiry_alert_days)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user.name, user.email, user.push_token, int(user.is_active),
             int(user.email_notifications), int(user.push_notifications),
             user.expiry_alert_days),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def deactivate(user_id: int) -> None:
    conn = get_connection()
    try:
        conn.execute("UPDATE users SET is_active = 0 WHERE id = ?", (user_id,))
        conn.commit()
    finally:
        conn.close()
