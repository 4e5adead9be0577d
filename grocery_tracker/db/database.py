"""SQLite database connection management and schema initialization.

Provides a single-file database at ~/.grocery_tracker/grocery_tracker.db.
Every public function that needs a connection should call get_connection(),
use it, and close it in a finally block.
"""

import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

_db_path_override: ContextVar["Path | None"] = ContextVar("_db_path_override", default=None)


@contextmanager
def override_db_path(path: "Path"):
    """Context manager to override the DB path for the current async task/thread.

    Used by demo routes to serve reads from the demo DB without affecting
    other concurrent requests. Job worker threads run inside a copy of the
    submitting context, so an override set around a job applies to its
    workers too.

    Example:
        with override_db_path(DEMO_DB_PATH):
            overview = aggregator.dashboard_stats(user_id)
    """
    token = _db_path_override.set(path)
    try:
        yield
    finally:
        _db_path_override.reset(token)


def get_db_path() -> Path:
    """Return the active DB path.

    Priority order:
    1. ContextVar override (used by demo routes per-request)
    2. DB_PATH environment variable (used by Docker / local dev)
    3. Default ~/.grocery_tracker/grocery_tracker.db
    """
    override = _db_path_override.get()
    if override is not None:
        return override
    env_url = os.environ.get("DB_PATH")
    if env_url:
        p = Path(env_url)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    db_dir = Path.home() / ".grocery_tracker"
    db_dir.mkdir(exist_ok=True)
    return db_dir / "grocery_tracker.db"


def get_connection(db_path: Path = None) -> sqlite3.Connection:
    """Return a new SQLite connection with Row factory and foreign keys enabled.

    Callers are responsible for closing the connection when done.
    """
    if db_path is None:
        db_path = get_db_path()
    conn = sqlite3.connect(str(db_path), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Path = None) -> None:
    """Create all tables if they don't already exist.

    Called once at application startup from main.py.
    Tables: users, categories, grocery_items, notifications, settings.
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    cursor.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            name                TEXT NOT NULL,
            email               TEXT,
            push_token          TEXT,
            is_active           INTEGER DEFAULT 1,
            email_notifications INTEGER DEFAULT 1,
            push_notifications  INTEGER DEFAULT 1,
            expiry_alert_days   INTEGER DEFAULT 3,
            created_at          TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS categories (
            id      INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            name    TEXT NOT NULL,
            color   TEXT
        );

        CREATE TABLE IF NOT EXISTS grocery_items (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id             INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name                TEXT NOT NULL,
            quantity            REAL DEFAULT 1,
            unit                TEXT,
            price               REAL DEFAULT 0,
            category_id         INTEGER REFERENCES categories(id) ON DELETE SET NULL,
            purchase_date       TEXT,
            expiry_date         TEXT,
            status              TEXT NOT NULL DEFAULT 'active',
            low_stock_threshold REAL DEFAULT 5,
            created_at          TEXT,
            updated_at          TEXT,
            consumed_at         TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_items_user_status
            ON grocery_items (user_id, status);

        CREATE TABLE IF NOT EXISTS notifications (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id         INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type            TEXT NOT NULL,
            priority        TEXT NOT NULL DEFAULT 'medium',
            status          TEXT NOT NULL DEFAULT 'unread',
            title           TEXT NOT NULL,
            message         TEXT,
            related_item_id INTEGER REFERENCES grocery_items(id) ON DELETE SET NULL,
            alert_tier      TEXT,
            dispatch_day    TEXT,
            payload         TEXT,
            created_at      TEXT NOT NULL,
            read_at         TEXT
        );

        CREATE UNIQUE INDEX IF NOT EXISTS uq_notifications_dispatch
            ON notifications (user_id, related_item_id, alert_tier, dispatch_day)
            WHERE related_item_id IS NOT NULL;

        CREATE INDEX IF NOT EXISTS idx_notifications_user_status
            ON notifications (user_id, status, created_at);

        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );
    """)

    conn.commit()

    # Migrations for existing databases
    for col, table, col_type in [
        ("sent_at", "notifications", "TEXT"),
        ("expired_at", "grocery_items", "TEXT"),
    ]:
        try:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {col_type}")
            conn.commit()
        except sqlite3.OperationalError:
            pass  # Column already exists

    conn.close()
