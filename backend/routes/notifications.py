"""
In-app notifications and team announcements.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store, require_admin
from backend.schemas import AnnouncementCreate, NotificationCreate
from core.models import Announcement, Identity, Notification
from core.store import CrmStore

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=List[Notification])
async def list_notifications(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    await store.load_notifications(me.user_id)
    return store.get_notifications_for_user(me.user_id)


@router.get("/notifications/unread-count")
async def unread_count(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return {"unread": store.get_unread_count_for_user(me.user_id)}


@router.post("/notifications", response_model=Notification, status_code=201)
async def send_notification(
    body: NotificationCreate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.add_notification(body.model_dump())


@router.post("/notifications/read-all")
async def mark_all_read(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    await store.mark_all_notifications_read(me.user_id)
    return {"unread": 0}


@router.post("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: str,
    me: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    await store.mark_notification_read(notification_id)
    return {"unread": store.get_unread_count_for_user(me.user_id)}


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: str,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    await store.delete_notification(notification_id)
    return {"status": "deleted", "id": notification_id}


@router.get("/announcements", response_model=List[Announcement])
async def list_announcements(_: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_active_announcements()


@router.post("/announcements", response_model=Announcement, status_code=201)
async def create_announcement(
    body: AnnouncementCreate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.add_announcement(body.model_dump())


@router.delete("/announcements/{announcement_id}")
async def delete_announcement(
    announcement_id: str,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    await store.delete_announcement(announcement_id)
    return {"status": "deleted", "id": announcement_id}
