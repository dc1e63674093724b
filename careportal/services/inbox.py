"""Reading side of the notification inbox. Rows are written by the worker."""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.db.models import Notification, utcnow


async def list_notifications(
    db: AsyncSession,
    principal_id: int,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    q = select(Notification).where(Notification.recipient_id == principal_id)
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return list((await db.execute(q)).scalars().all())


async def unread_count(db: AsyncSession, principal_id: int) -> int:
    q = select(func.count(Notification.id)).where(
        Notification.recipient_id == principal_id,
        Notification.is_read.is_(False),
    )
    return int((await db.execute(q)).scalar_one())


async def mark_read(
    db: AsyncSession,
    principal_id: int,
    notification_ids: Optional[Sequence[int]] = None,
) -> int:
    """Mark the given ids (or every unread one) as read. Only the caller's own rows are touched."""
    stmt = (
        update(Notification)
        .where(Notification.recipient_id == principal_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if notification_ids is not None:
        if not notification_ids:
            return 0
        stmt = stmt.where(Notification.id.in_(list(notification_ids)))
    res = await db.execute(stmt)
    await db.commit()
    return res.rowcount or 0
