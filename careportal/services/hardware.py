"""Locations, hardware catalogue and the bulk-upload CSV template."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.errors import NotFound
from careportal.db.models import (
    Hardware,
    HardwareStatusEnum,
    Location,
    Organization,
)
from careportal.services.scope import AccessScope

CSV_TEMPLATE_FILENAME = "device-upload-template.csv"

CSV_TEMPLATE_HEADERS = [
    "organization_name",
    "location_name",
    "name",
    "hardware_type",
    "manufacturer",
    "model_number",
    "serial_number",
    "status",
    "installation_date",
    "warranty_expiration",
    "internal_notes",
]


# ---- locations ----


async def create_location(
    db: AsyncSession,
    scope: AccessScope,
    *,
    org_id: int,
    name: str,
    address: Optional[str] = None,
    city: Optional[str] = None,
    timezone: str = "UTC",
    internal_notes: Optional[str] = None,
) -> Location:
    scope.require_org_admin(org_id)
    if await db.get(Organization, org_id) is None:
        raise NotFound("Organization not found")
    loc = Location(
        org_id=org_id,
        name=name,
        address=address,
        city=city,
        timezone=timezone,
        internal_notes=internal_notes,
    )
    db.add(loc)
    await db.commit()
    await db.refresh(loc)
    return loc


async def list_locations(db: AsyncSession, scope: AccessScope, *, org_id: Optional[int] = None) -> list[Location]:
    q = select(Location)
    scoped = scope.location_filter(Location.org_id, Location.id)
    if scoped is not None:
        q = q.where(scoped)
    if org_id is not None:
        q = q.where(Location.org_id == org_id)
    return list((await db.execute(q.order_by(Location.name, Location.id))).scalars().all())


# ---- hardware ----


async def create_hardware(
    db: AsyncSession,
    scope: AccessScope,
    *,
    location_id: int,
    name: str,
    hardware_type: str,
    manufacturer: Optional[str] = None,
    model_number: Optional[str] = None,
    serial_number: Optional[str] = None,
    status: HardwareStatusEnum = HardwareStatusEnum.active,
    installation_date: Optional[datetime] = None,
    warranty_expiration: Optional[datetime] = None,
    internal_notes: Optional[str] = None,
) -> Hardware:
    location = await db.get(Location, location_id)
    if location is None:
        raise NotFound("Location not found")
    scope.require_org_admin(location.org_id)
    hw = Hardware(
        org_id=location.org_id,
        location_id=location.id,
        name=name,
        hardware_type=hardware_type,
        manufacturer=manufacturer,
        model_number=model_number,
        serial_number=serial_number,
        status=status,
        installation_date=installation_date,
        warranty_expiration=warranty_expiration,
        internal_notes=internal_notes,
    )
    db.add(hw)
    await db.commit()
    await db.refresh(hw)
    return hw


async def list_hardware(
    db: AsyncSession,
    scope: AccessScope,
    *,
    location_id: Optional[int] = None,
    status: Optional[HardwareStatusEnum] = None,
) -> list[Hardware]:
    # the catalogue is shared with every member of the organization
    q = select(Hardware)
    scoped = scope.org_filter(Hardware.org_id)
    if scoped is not None:
        q = q.where(scoped)
    if location_id is not None:
        q = q.where(Hardware.location_id == location_id)
    if status is not None:
        q = q.where(Hardware.status == status)
    return list((await db.execute(q.order_by(Hardware.name, Hardware.id))).scalars().all())


async def get_hardware(db: AsyncSession, scope: AccessScope, hardware_id: int) -> Hardware:
    hw = await db.get(Hardware, hardware_id)
    if hw is None or not scope.can_read_org(hw.org_id):
        raise NotFound("Hardware not found")
    return hw


# ---- CSV template ----


async def csv_template(db: AsyncSession, scope: AccessScope) -> str:
    """Header plus two example rows, using a location the caller can see when there is one."""
    q = select(Organization.name, Location.name).join(Organization, Organization.id == Location.org_id)
    scoped = scope.location_filter(Location.org_id, Location.id)
    if scoped is not None:
        q = q.where(scoped)
    sample = (await db.execute(q.order_by(Location.id).limit(1))).first()
    org_name, loc_name = sample if sample else ("Acme Corp", "Main Office")

    rows = [
        [org_name, loc_name, "Ubiquiti Dream Machine Pro", "Router", "Ubiquiti", "UDM-Pro",
         "SN-2024-001", "active", "2024-06-15", "2027-06-15", "Primary gateway router"],
        [org_name, loc_name, "UniFi Switch 24 PoE", "Switch", "Ubiquiti", "USW-24-POE",
         "SN-2024-002", "active", "2024-06-15", "2027-06-15", ""],
    ]
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_TEMPLATE_HEADERS)
    writer.writerows(rows)
    return buf.getvalue()
