from fastapi import APIRouter, Depends, HTTPException, Query

from grocery_tracker.core import items as items_core
from grocery_tracker.core import users as users_core
from grocery_tracker.db.models import User
from grocery_tracker.runtime import Services
from app.dependencies import current_user_id, get_services

router = APIRouter(prefix="/expiry", tags=["expiry"])


def _user(user_id: int) -> User:
    user = users_core.get(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/expiring-soon")
def expiring_soon(
    days: int = Query(7, ge=0, le=365),
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    window = _user(user_id).preferences.expiry_alert_days
    items = services.aggregator.expiring_soon(user_id, days, alert_window_days=window)
    return {"days": days, "count": len(items), "items": items}


@router.get("/expired")
def expired(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    window = _user(user_id).preferences.expiry_alert_days
    items = services.aggregator.expired_items(user_id, alert_window_days=window)
    return {"count": len(items), "items": items}


@router.get("/summary")
def summary(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    window = _user(user_id).preferences.expiry_alert_days
    return services.aggregator.expiry_summary(user_id, alert_window_days=window)


@router.get("/check/{item_id}")
def check(
    item_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    item = items_core.get(item_id)
    if item is None or item.user_id != user_id:
        raise HTTPException(status_code=404, detail="Item not found")
    window = _user(user_id).preferences.expiry_alert_days
    try:
        return services.aggregator.expiry_entry(item, alert_window_days=window)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/notify")
def notify(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    """Run the expiry and stock check now for the current user only."""
    return services.dispatcher.run_for_user(_user(user_id))
