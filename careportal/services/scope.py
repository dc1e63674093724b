"""
Access-scope resolver.

An ``AccessScope`` is computed once per request from the principal, its
memberships and its location assignments, then passed to every service call.
Every decision about who may see or touch which tenant's data goes through it;
nothing downstream re-reads role flags on its own.

Tiers, highest first:
  platform_admin - bypasses organization/location checks
  org_admin      - full access inside the organizations it administers
  employee       - write access at assigned locations, read access to shared
                   organization resources (procedures, hardware catalogue)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from careportal.core.errors import Forbidden
from careportal.db.models import (
    AdminLevelEnum,
    Location,
    LocationAssignment,
    Membership,
    MembershipRoleEnum,
    Principal,
)


class Tier(str, enum.Enum):
    platform_admin = "platform_admin"
    org_admin = "org_admin"
    employee = "employee"


TIER_RANK: dict[Tier, int] = {
    Tier.employee: 0,
    Tier.org_admin: 1,
    Tier.platform_admin: 2,
}


@dataclass(frozen=True)
class ResolvedScope:
    tier: Tier
    org_id: Optional[int] = None
    # None means "every location" (platform admin, or org admin of org_id)
    location_ids: Optional[frozenset[int]] = None


@dataclass(frozen=True)
class AccessScope:
    principal_id: int
    is_platform_admin: bool = False
    admin_level: Optional[AdminLevelEnum] = None
    # org id -> membership role
    org_roles: Mapping[int, MembershipRoleEnum] = field(default_factory=dict)
    # assigned location id -> owning org id
    location_orgs: Mapping[int, int] = field(default_factory=dict)

    # ---- tiers ----

    @property
    def can_write(self) -> bool:
        """Read-only platform admins may look at everything and change nothing."""
        return not (self.is_platform_admin and self.admin_level == AdminLevelEnum.read_only)

    @property
    def is_super_admin(self) -> bool:
        return self.is_platform_admin and self.admin_level in (None, AdminLevelEnum.super_admin)

    @property
    def admin_org_ids(self) -> frozenset[int]:
        return frozenset(o for o, r in self.org_roles.items() if r == MembershipRoleEnum.org_admin)

    @property
    def member_org_ids(self) -> frozenset[int]:
        return frozenset(self.org_roles)

    @property
    def assigned_locations(self) -> dict[int, int]:
        """Assignments only count inside organizations the principal belongs to."""
        return {loc: org for loc, org in self.location_orgs.items() if org in self.org_roles}

    def is_org_admin(self, org_id: Optional[int] = None) -> bool:
        if self.is_platform_admin:
            return True
        if org_id is None:
            return bool(self.admin_org_ids)
        return self.org_roles.get(org_id) == MembershipRoleEnum.org_admin

    def resolve(self, org_id: Optional[int] = None) -> ResolvedScope:
        """
        Effective tier for ``org_id`` (or the highest tier held anywhere).

        Raises Forbidden when the principal has neither the platform flag nor a
        membership in the target organization.
        """
        if self.is_platform_admin:
            return ResolvedScope(tier=Tier.platform_admin, org_id=org_id)

        if org_id is None:
            if self.admin_org_ids:
                return ResolvedScope(tier=Tier.org_admin)
            if self.org_roles:
                return ResolvedScope(tier=Tier.employee, location_ids=frozenset(self.assigned_locations))
            raise Forbidden("No organization access")

        if self.org_roles.get(org_id) == MembershipRoleEnum.org_admin:
            return ResolvedScope(tier=Tier.org_admin, org_id=org_id)

        if org_id in self.org_roles:
            locations = frozenset(loc for loc, org in self.assigned_locations.items() if org == org_id)
            return ResolvedScope(tier=Tier.employee, org_id=org_id, location_ids=locations)
        raise Forbidden("No access to this organization")

    # ---- resource checks ----

    def can_access_location(self, org_id: int, location_id: int) -> bool:
        if self.is_platform_admin:
            return True
        if self.is_org_admin(org_id):
            return True
        return self.assigned_locations.get(location_id) == org_id

    def can_write_location(self, org_id: int, location_id: int) -> bool:
        return self.can_write and self.can_access_location(org_id, location_id)

    def can_read_org(self, org_id: int) -> bool:
        return self.is_platform_admin or org_id in self.member_org_ids

    def require_platform_admin(self, *, write: bool = False) -> None:
        if not self.is_platform_admin:
            raise Forbidden("Forbidden - Platform admin only")
        if write and not self.can_write:
            raise Forbidden("Read-only platform admins cannot modify data")

    def require_org_admin(self, org_id: int, *, write: bool = True) -> None:
        if not self.is_org_admin(org_id):
            raise Forbidden("Organization admin access required")
        if write and not self.can_write:
            raise Forbidden("Read-only platform admins cannot modify data")

    def require_location_write(self, org_id: int, location_id: int) -> None:
        if not self.can_write_location(org_id, location_id):
            raise Forbidden("No write access to this location")

    # ---- query filters ----

    def location_filter(self, org_col, location_col) -> Optional[ColumnElement[bool]]:
        """
        SQL predicate restricting rows to this scope, or None for platform admins.
        Applied to listings so out-of-scope rows are simply never returned.
        """
        if self.is_platform_admin:
            return None
        clauses = []
        if self.admin_org_ids:
            clauses.append(org_col.in_(sorted(self.admin_org_ids)))
        assigned = self.assigned_locations
        if assigned:
            clauses.append(location_col.in_(sorted(assigned)))
        if not clauses:
            return org_col.in_([])
        return or_(*clauses)

    def org_filter(self, org_col) -> Optional[ColumnElement[bool]]:
        if self.is_platform_admin:
            return None
        return org_col.in_(sorted(self.member_org_ids))


async def load_access_scope(db: AsyncSession, principal: Principal) -> AccessScope:
    memberships = (
        await db.execute(
            select(Membership.org_id, Membership.role).where(Membership.principal_id == principal.id)
        )
    ).all()
    assignments = (
        await db.execute(
            select(LocationAssignment.location_id, Location.org_id)
            .join(Location, Location.id == LocationAssignment.location_id)
            .where(LocationAssignment.principal_id == principal.id)
        )
    ).all()
    return AccessScope(
        principal_id=principal.id,
        is_platform_admin=bool(principal.is_platform_admin),
        admin_level=principal.admin_level,
        org_roles={org_id: role for org_id, role in memberships},
        location_orgs={loc_id: org_id for loc_id, org_id in assignments},
    )


async def can_access_location(db: AsyncSession, scope: AccessScope, location_id: int) -> bool:
    """Location check when only the location id is known."""
    if scope.is_platform_admin:
        return True
    org_id = (
        await db.execute(select(Location.org_id).where(Location.id == location_id))
    ).scalar_one_or_none()
    if org_id is None:
        return False
    return scope.can_access_location(org_id, location_id)
