from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from grocery_tracker.core import notifications as notifications_core
from app.dependencies import current_user_id
from app.schemas import NotificationQuery

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    query: Annotated[NotificationQuery, Query()],
    user_id: int = Depends(current_user_id),
):
    page = notifications_core.list_notifications(
        user_id,
        status=query.status.value if query.status else None,
        type=query.type.value if query.type else None,
        priority=query.priority.value if query.priority else None,
        page=query.page,
        limit=query.limit,
    )
    return {
        "items": page.items,
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.pages,
    }


@router.get("/unread-count")
def unread_count(user_id: int = Depends(current_user_id)):
    return {"unread": notifications_core.unread_count(user_id)}


@router.post("/read-all")
def mark_all_read(user_id: int = Depends(current_user_id)):
    return {"updated": notifications_core.mark_all_read(user_id)}


@router.post("/{notification_id}/read")
def mark_read(notification_id: int, user_id: int = Depends(current_user_id)):
    if not notifications_core.mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return notifications_core.get(notification_id)


@router.post("/{notification_id}/archive")
def archive(notification_id: int, user_id: int = Depends(current_user_id)):
    if not notifications_core.archive(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return notifications_core.get(notification_id)


@router.delete("/{notification_id}")
def delete(notification_id: int, user_id: int = Depends(current_user_id)):
    if not notifications_core.delete(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": notification_id}
