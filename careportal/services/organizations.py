"""
Tenancy administration: organizations, memberships, location assignments
and platform admins.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.errors import Forbidden, NotFound, ValidationError
from careportal.core.logging import current_request_id
from careportal.core.security import generate_temporary_password, hash_password
from careportal.db.models import (
    AdminLevelEnum,
    AuditLog,
    Location,
    LocationAssignment,
    Membership,
    MembershipRoleEnum,
    Organization,
    Principal,
)
from careportal.services import notifications
from careportal.services.scope import AccessScope

log = logging.getLogger(__name__)


async def _provision_principal(
    db: AsyncSession,
    email: str,
    display_name: Optional[str] = None,
) -> tuple[Principal, Optional[str]]:
    """Existing principal by email, or a new one with a temporary password (returned once)."""
    email = email.strip().lower()
    p = (await db.execute(select(Principal).where(Principal.email == email))).scalar_one_or_none()
    if p is not None:
        return p, None
    temp = generate_temporary_password()
    p = Principal(email=email, password_hash=hash_password(temp), display_name=display_name, is_active=True)
    db.add(p)
    await db.flush()
    return p, temp


# ---- organizations ----


async def create_organization(
    db: AsyncSession,
    scope: AccessScope,
    *,
    name: str,
    admin_email: Optional[str] = None,
    admin_name: Optional[str] = None,
) -> Organization:
    scope.require_platform_admin(write=True)
    name = name.strip()
    if not name:
        raise ValidationError("Organization name is required")
    exists = (await db.execute(select(Organization.id).where(Organization.name == name))).scalar_one_or_none()
    if exists is not None:
        raise ValidationError("Organization already exists")

    org = Organization(name=name)
    db.add(org)
    await db.flush()

    welcome: Optional[tuple[str, Optional[str]]] = None
    if admin_email:
        admin, temp = await _provision_principal(db, admin_email, admin_name)
        db.add(Membership(principal_id=admin.id, org_id=org.id, role=MembershipRoleEnum.org_admin))
        welcome = (admin.email, temp)

    await db.commit()
    await db.refresh(org)
    log.info("Organization created", extra={"org_id": org.id})

    if welcome:
        # best effort; the admin can still sign in with the temporary password
        notifications.send_welcome_email(welcome[0], org_name=org.name, temporary_password=welcome[1])
    return org


async def list_organizations(db: AsyncSession, scope: AccessScope) -> list[Organization]:
    q = select(Organization)
    scoped = scope.org_filter(Organization.id)
    if scoped is not None:
        q = q.where(scoped)
    return list((await db.execute(q.order_by(Organization.name))).scalars().all())


async def add_member(
    db: AsyncSession,
    scope: AccessScope,
    org_id: int,
    *,
    email: str,
    role: MembershipRoleEnum = MembershipRoleEnum.employee,
    display_name: Optional[str] = None,
) -> Membership:
    scope.require_org_admin(org_id)
    org = await db.get(Organization, org_id)
    if org is None:
        raise NotFound("Organization not found")

    principal, temp = await _provision_principal(db, email, display_name)
    m = (
        await db.execute(
            select(Membership).where(Membership.principal_id == principal.id, Membership.org_id == org_id)
        )
    ).scalar_one_or_none()
    created = m is None
    if created:
        m = Membership(principal_id=principal.id, org_id=org_id, role=role)
        db.add(m)
    else:
        m.role = role
    await db.commit()
    await db.refresh(m)

    if created:
        notifications.send_welcome_email(principal.email, org_name=org.name, temporary_password=temp)
    return m


async def remove_member(
    db: AsyncSession,
    scope: AccessScope,
    actor: Principal,
    org_id: int,
    principal_id: int,
) -> None:
    """Drop the membership together with the principal's locations in this org."""
    scope.require_org_admin(org_id)
    m = (
        await db.execute(
            select(Membership).where(Membership.principal_id == principal_id, Membership.org_id == org_id)
        )
    ).scalar_one_or_none()
    if m is None:
        raise NotFound("Membership not found")
    membership_id, role = m.id, m.role.value

    org_locations = select(Location.id).where(Location.org_id == org_id)
    try:
        await db.execute(
            delete(LocationAssignment).where(
                LocationAssignment.principal_id == principal_id,
                LocationAssignment.location_id.in_(org_locations),
            )
        )
        await db.execute(delete(Membership).where(Membership.id == membership_id))
        db.add(AuditLog(
            actor_id=actor.id,
            action="membership.remove",
            org_id=org_id,
            request_id=current_request_id(),
            payload={"principal_id": principal_id, "role": role},
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    log.warning(
        "Principal %s removed from organization %s by %s",
        principal_id, org_id, actor.email,
        extra={"principal_id": principal_id, "org_id": org_id, "actor_id": actor.id},
    )


# ---- location assignments ----


async def get_location_assignments(
    db: AsyncSession,
    scope: AccessScope,
    principal_id: int,
    org_id: int,
) -> list[int]:
    scope.require_org_admin(org_id, write=False)
    q = (
        select(LocationAssignment.location_id)
        .join(Location, Location.id == LocationAssignment.location_id)
        .where(LocationAssignment.principal_id == principal_id, Location.org_id == org_id)
        .order_by(LocationAssignment.location_id)
    )
    return list((await db.execute(q)).scalars().all())


async def set_location_assignments(
    db: AsyncSession,
    scope: AccessScope,
    principal_id: int,
    *,
    org_id: int,
    location_ids: Sequence[int],
) -> list[int]:
    """
    Replace the principal's assignments inside ``org_id``; assignments in
    other organizations are untouched.
    """
    scope.require_org_admin(org_id)
    if await db.get(Principal, principal_id) is None:
        raise NotFound("User not found")
    member = (
        await db.execute(
            select(Membership.id).where(Membership.principal_id == principal_id, Membership.org_id == org_id)
        )
    ).scalar_one_or_none()
    if member is None:
        raise ValidationError("User is not a member of this organization")

    wanted = sorted(set(location_ids))
    if wanted:
        found = (
            await db.execute(select(Location.id).where(Location.id.in_(wanted), Location.org_id == org_id))
        ).scalars().all()
        if len(found) != len(wanted):
            raise ValidationError("Some locations do not belong to this organization")

    org_locations = select(Location.id).where(Location.org_id == org_id)
    try:
        await db.execute(
            delete(LocationAssignment).where(
                LocationAssignment.principal_id == principal_id,
                LocationAssignment.location_id.in_(org_locations),
            )
        )
        db.add_all([LocationAssignment(principal_id=principal_id, location_id=loc) for loc in wanted])
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    log.info(
        "Location assignments replaced",
        extra={"principal_id": principal_id, "org_id": org_id, "locations": wanted},
    )
    return wanted


# ---- platform admins ----


async def set_platform_admin(
    db: AsyncSession,
    scope: AccessScope,
    actor: Principal,
    *,
    email: str,
    admin_level: AdminLevelEnum,
    display_name: Optional[str] = None,
) -> Principal:
    if not scope.is_super_admin:
        raise Forbidden("Only super admins can manage platform administrators")

    principal, temp = await _provision_principal(db, email, display_name)
    previous = principal.admin_level.value if principal.is_platform_admin and principal.admin_level else None
    principal.is_platform_admin = True
    principal.admin_level = admin_level
    db.add(AuditLog(
        actor_id=actor.id,
        action="platform_admin.set",
        request_id=current_request_id(),
        payload={"principal_id": principal.id, "from": previous, "to": admin_level.value},
    ))
    await db.commit()
    await db.refresh(principal)

    log.warning(
        "Platform admin level of %s set to %s by %s",
        principal.email, admin_level.value, actor.email,
        extra={"principal_id": principal.id, "actor_id": actor.id},
    )
    if temp:
        notifications.send_welcome_email(principal.email, org_name="the platform", temporary_password=temp)
    return principal
