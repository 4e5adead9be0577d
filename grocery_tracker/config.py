"""Runtime configuration: environment settings plus the SQLite settings table.

Environment variables are read at call time (load_settings) so tests can
set them per-test. The settings table is a small key-value store.

Known keys:
    job_last_run:<job name>  ISO UTC timestamp of the job's last completed run,
                             used to catch up a run missed while the process was down.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from grocery_tracker.db.database import get_connection


@dataclass
class Settings:
    timezone: str = "UTC"
    job_workers: int = 4
    channel_timeout: float = 5.0
    scheduler_enabled: bool = True
    catch_up_missed_runs: bool = True
    push_gateway_url: Optional[str] = None
    push_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    smtp_starttls: bool = True
    notification_retention_days: int = 30
    expired_item_retention_days: int = 90
    consumed_item_retention_days: int = 60
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    return int(value) if value else default


def load_settings() -> Settings:
    """Build Settings from the environment. Raises ValueError on malformed numbers."""
    return Settings(
        timezone=os.environ.get("TIMEZONE") or "UTC",
        job_workers=max(1, _env_int("JOB_WORKERS", 4)),
        channel_timeout=float(os.environ.get("CHANNEL_TIMEOUT") or 5.0),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        catch_up_missed_runs=_env_bool("CATCH_UP_MISSED_RUNS", True),
        push_gateway_url=os.environ.get("PUSH_GATEWAY_URL") or None,
        push_api_key=os.environ.get("PUSH_API_KEY") or None,
        smtp_host=os.environ.get("SMTP_HOST") or None,
        smtp_port=_env_int("SMTP_PORT", 587),
        smtp_user=os.environ.get("SMTP_USER") or None,
        smtp_password=os.environ.get("SMTP_PASSWORD") or None,
        smtp_from=os.environ.get("SMTP_FROM") or None,
        smtp_starttls=_env_bool("SMTP_STARTTLS", True),
        notification_retention_days=_env_int("NOTIFICATION_RETENTION_DAYS", 30),
        expired_item_retention_days=_env_int("EXPIRED_ITEM_RETENTION_DAYS", 90),
        consumed_item_retention_days=_env_int("CONSUMED_ITEM_RETENTION_DAYS", 60),
        log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        )
    root.setLevel(level)


def get_setting(key: str, default: str = None) -> str:
    """Return the value for a settings key, or default if not found."""
    conn = get_connection()
    try:
        row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default
    finally:
        conn.close()


def set_setting(key: str, value: str) -> None:
    """Insert or update a settings key-value pair (upsert)."""
    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, value),
        )
        conn.commit()
    finally:
        conn.close()
