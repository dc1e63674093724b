"""Troubleshooting procedures and their hardware links."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.errors import NotFound, ValidationError
from careportal.db.models import SOP, Hardware, HardwareSOP, Principal
from careportal.services.scope import AccessScope

log = logging.getLogger(__name__)


async def _check_hardware(db: AsyncSession, org_id: int, hardware_ids: Sequence[int]) -> list[int]:
    ids = sorted(set(hardware_ids))
    if not ids:
        return []
    found = (
        await db.execute(select(Hardware.id).where(Hardware.id.in_(ids), Hardware.org_id == org_id))
    ).scalars().all()
    missing = set(ids) - set(found)
    if missing:
        raise ValidationError(f"Hardware not found in this organization: {sorted(missing)}")
    return ids


async def hardware_ids_for(db: AsyncSession, sop_id: int) -> list[int]:
    return list(
        (
            await db.execute(
                select(HardwareSOP.hardware_id).where(HardwareSOP.sop_id == sop_id).order_by(HardwareSOP.hardware_id)
            )
        ).scalars().all()
    )


async def create_sop(
    db: AsyncSession,
    scope: AccessScope,
    principal: Principal,
    *,
    org_id: int,
    title: str,
    content: str,
    hardware_type: Optional[str] = None,
    is_active: bool = True,
    hardware_ids: Sequence[int] = (),
) -> SOP:
    scope.require_org_admin(org_id)
    ids = await _check_hardware(db, org_id, hardware_ids)

    sop = SOP(
        org_id=org_id,
        title=title,
        content=content,
        hardware_type=hardware_type,
        is_active=is_active,
        created_by=principal.id,
        version=1,
    )
    db.add(sop)
    await db.flush()
    db.add_all([HardwareSOP(sop_id=sop.id, hardware_id=hw_id) for hw_id in ids])
    await db.commit()
    await db.refresh(sop)
    log.info("SOP created", extra={"sop_id": sop.id, "org_id": org_id, "hardware_count": len(ids)})
    return sop


async def get_sop(db: AsyncSession, scope: AccessScope, sop_id: int) -> SOP:
    sop = await db.get(SOP, sop_id)
    if sop is None or not scope.can_read_org(sop.org_id):
        raise NotFound("SOP not found")
    return sop


async def update_sop(
    db: AsyncSession,
    scope: AccessScope,
    sop_id: int,
    *,
    title: Optional[str] = None,
    content: Optional[str] = None,
    hardware_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    hardware_ids: Optional[Sequence[int]] = None,
) -> SOP:
    """
    ``hardware_ids`` of None leaves the links alone; a list (even empty)
    replaces them. Old links are deleted and new ones inserted in the same
    transaction, so a failure leaves the previous set in place.
    """
    sop = await get_sop(db, scope, sop_id)
    scope.require_org_admin(sop.org_id)

    try:
        if title is not None or content is not None:
            changed = (title is not None and title != sop.title) or (content is not None and content != sop.content)
            if title is not None:
                sop.title = title
            if content is not None:
                sop.content = content
            if changed:
                # outstanding acknowledgments no longer cover this procedure
                sop.version = sop.version + 1
        if hardware_type is not None:
            sop.hardware_type = hardware_type
        if is_active is not None:
            sop.is_active = is_active

        if hardware_ids is not None:
            ids = await _check_hardware(db, sop.org_id, hardware_ids)
            await db.execute(delete(HardwareSOP).where(HardwareSOP.sop_id == sop.id))
            db.add_all([HardwareSOP(sop_id=sop.id, hardware_id=hw_id) for hw_id in ids])

        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(sop)
    return sop


async def delete_sop(db: AsyncSession, scope: AccessScope, sop_id: int) -> None:
    sop = await get_sop(db, scope, sop_id)
    scope.require_org_admin(sop.org_id)
    await db.execute(delete(HardwareSOP).where(HardwareSOP.sop_id == sop.id))
    await db.delete(sop)
    await db.commit()
    log.info("SOP deleted", extra={"sop_id": sop_id, "org_id": sop.org_id})


async def list_sops(
    db: AsyncSession,
    scope: AccessScope,
    *,
    org_id: Optional[int] = None,
    include_inactive: bool = False,
) -> list[SOP]:
    q = select(SOP)
    scoped = scope.org_filter(SOP.org_id)
    if scoped is not None:
        q = q.where(scoped)
    if org_id is not None:
        q = q.where(SOP.org_id == org_id)
    if not include_inactive:
        q = q.where(SOP.is_active.is_(True))
    q = q.order_by(SOP.title, SOP.id)
    return list((await db.execute(q)).scalars().all())
