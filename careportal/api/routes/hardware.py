# careportal/api/routes/hardware.py
from __future__ import annotations

from fastapi import APIRouter, Query, status
from fastapi.responses import Response

from careportal.db.models import HardwareStatusEnum
from careportal.schemas.catalog import (
    HardwareCreate,
    HardwareOut,
    LocationCreate,
    LocationOut,
    SOPAcknowledgmentIn,
    SOPAcknowledgmentOut,
    SOPOut,
)
from careportal.services import gating, hardware as svc

from ..deps import DBDep, PrincipalDep, ScopeDep

router = APIRouter()
locations_router = APIRouter()


# --- locations ----------------------------------------------------------------

@locations_router.post("", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
async def create_location(payload: LocationCreate, db: DBDep, scope: ScopeDep):
    return await svc.create_location(db, scope, **payload.model_dump())


@locations_router.get("", response_model=list[LocationOut])
async def list_locations(db: DBDep, scope: ScopeDep, org_id: int | None = None):
    return await svc.list_locations(db, scope, org_id=org_id)


# --- hardware -----------------------------------------------------------------

@router.post("", response_model=HardwareOut, status_code=status.HTTP_201_CREATED)
async def create_hardware(payload: HardwareCreate, db: DBDep, scope: ScopeDep):
    return await svc.create_hardware(db, scope, **payload.model_dump())


@router.get("", response_model=list[HardwareOut])
async def list_hardware(
    db: DBDep,
    scope: ScopeDep,
    location_id: int | None = None,
    status_: HardwareStatusEnum | None = Query(default=None, alias="status"),
):
    return await svc.list_hardware(db, scope, location_id=location_id, status=status_)


# declared before /{hardware_id}
@router.get("/csv-template")
async def csv_template(db: DBDep, scope: ScopeDep):
    body = await svc.csv_template(db, scope)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{svc.CSV_TEMPLATE_FILENAME}"'},
    )


@router.get("/{hardware_id}", response_model=HardwareOut)
async def get_hardware(hardware_id: int, db: DBDep, scope: ScopeDep):
    return await svc.get_hardware(db, scope, hardware_id)


# --- troubleshooting gate -----------------------------------------------------

@router.get("/{hardware_id}/sops", response_model=list[SOPOut])
async def hardware_sops(hardware_id: int, db: DBDep, scope: ScopeDep):
    return await gating.list_procedures(db, scope, hardware_id)


@router.post(
    "/{hardware_id}/sop-acknowledgments",
    response_model=SOPAcknowledgmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def acknowledge_sops(
    hardware_id: int,
    payload: SOPAcknowledgmentIn,
    db: DBDep,
    current: PrincipalDep,
    scope: ScopeDep,
):
    return await gating.record_acknowledgment(
        db, scope, current, hardware_id,
        sop_ids=payload.sop_ids,
        scrolled_to_end=payload.scrolled_to_end,
        confirmed=payload.confirmed,
    )
