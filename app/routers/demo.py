"""Demo router — read-only views backed by the demo DB.

Sets the db path override ContextVar so all core/ functions use demo.db.
Only GET routes exist here; nothing in the demo can change state.
"""
import os
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from grocery_tracker.db.database import override_db_path
from grocery_tracker.core import notifications as notifications_core
from grocery_tracker.core import users as users_core
from grocery_tracker.core.analytics import REPORT_KINDS
from grocery_tracker.runtime import Services
from app.dependencies import get_services

router = APIRouter(prefix="/demo", tags=["demo"])


def _demo_db_path() -> Path:
    return Path(os.environ.get("DEMO_DB_URL", "data/demo.db"))


def _demo_user_id() -> int:
    active = users_core.list_active_users()
    if not active:
        raise HTTPException(status_code=404, detail="Demo data not seeded")
    return active[0].id


@router.get("/dashboard")
def demo_dashboard(services: Services = Depends(get_services)):
    with override_db_path(_demo_db_path()):
        return services.aggregator.dashboard_stats(_demo_user_id())


@router.get("/notifications")
def demo_notifications(page: int = 1):
    with override_db_path(_demo_db_path()):
        result = notifications_core.list_notifications(_demo_user_id(), page=page)
        unread = notifications_core.unread_count(_demo_user_id())
    return {"items": result.items, "total": result.total, "page": result.page, "unread": unread}


@router.get("/reports/{kind}")
def demo_report(kind: str, services: Services = Depends(get_services)):
    if kind not in REPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown report type: {kind}")
    with override_db_path(_demo_db_path()):
        return services.aggregator.get_report(_demo_user_id(), kind)
