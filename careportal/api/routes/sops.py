# careportal/api/routes/sops.py
from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import Response

from careportal.db.models import SOP
from careportal.schemas.catalog import SOPCreate, SOPOut, SOPUpdate
from careportal.services import sops as svc

from ..deps import DBDep, PrincipalDep, ScopeDep

router = APIRouter()


async def _out(db, sop: SOP) -> SOPOut:
    out = SOPOut.model_validate(sop)
    out.hardware_ids = await svc.hardware_ids_for(db, sop.id)
    return out


@router.post("", response_model=SOPOut, status_code=status.HTTP_201_CREATED)
async def create_sop(payload: SOPCreate, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    sop = await svc.create_sop(db, scope, current, **payload.model_dump())
    return await _out(db, sop)


@router.get("", response_model=list[SOPOut])
async def list_sops(db: DBDep, scope: ScopeDep, org_id: int | None = None, include_inactive: bool = False):
    rows = await svc.list_sops(db, scope, org_id=org_id, include_inactive=include_inactive)
    return [await _out(db, s) for s in rows]


@router.get("/{sop_id}", response_model=SOPOut)
async def get_sop(sop_id: int, db: DBDep, scope: ScopeDep):
    return await _out(db, await svc.get_sop(db, scope, sop_id))


@router.put("/{sop_id}", response_model=SOPOut)
async def update_sop(sop_id: int, payload: SOPUpdate, db: DBDep, scope: ScopeDep):
    sop = await svc.update_sop(db, scope, sop_id, **payload.model_dump(exclude_unset=True))
    return await _out(db, sop)


@router.delete("/{sop_id}", status_code=204)
async def delete_sop(sop_id: int, db: DBDep, scope: ScopeDep):
    await svc.delete_sop(db, scope, sop_id)
    return Response(status_code=204)
