# careportal/api/routes/notifications.py
from __future__ import annotations

from fastapi import APIRouter

from careportal.schemas.admin import MarkReadIn, NotificationOut
from careportal.services import inbox

from ..deps import DBDep, PrincipalDep

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def list_notifications(db: DBDep, current: PrincipalDep, unread_only: bool = False):
    return await inbox.list_notifications(db, current.id, unread_only=unread_only)


@router.get("/count")
async def unread_count(db: DBDep, current: PrincipalDep):
    return {"count": await inbox.unread_count(db, current.id)}


@router.put("")
async def mark_read(payload: MarkReadIn, db: DBDep, current: PrincipalDep):
    updated = await inbox.mark_read(db, current.id, payload.notification_ids)
    return {"success": True, "updated": updated}
