# careportal/api/routes/admin.py
from __future__ import annotations

from fastapi import APIRouter, Response, status

from careportal.schemas.admin import (
    LocationAssignmentsIn,
    LocationAssignmentsOut,
    MemberIn,
    MemberOut,
    OrganizationCreate,
    OrganizationOut,
    PlatformAdminIn,
    ReportShareIn,
    ReportShareOut,
)
from careportal.schemas.auth import PrincipalOut
from careportal.services import notifications
from careportal.services import organizations as svc
from careportal.services.auth import serialize_principal

from ..deps import DBDep, PrincipalDep, ScopeDep

router = APIRouter()
organizations_router = APIRouter()


# --- organizations ------------------------------------------------------------

@organizations_router.post("", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
async def create_organization(payload: OrganizationCreate, db: DBDep, scope: ScopeDep):
    return await svc.create_organization(
        db, scope,
        name=payload.name,
        admin_email=str(payload.admin_email) if payload.admin_email else None,
        admin_name=payload.admin_name,
    )


@organizations_router.get("", response_model=list[OrganizationOut])
async def list_organizations(db: DBDep, scope: ScopeDep):
    return await svc.list_organizations(db, scope)


@organizations_router.post("/{org_id}/members", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def add_member(org_id: int, payload: MemberIn, db: DBDep, scope: ScopeDep):
    return await svc.add_member(
        db, scope, org_id,
        email=str(payload.email),
        role=payload.role,
        display_name=payload.display_name,
    )


@organizations_router.delete("/{org_id}/members/{principal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(org_id: int, principal_id: int, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    await svc.remove_member(db, scope, current, org_id, principal_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- location assignments -----------------------------------------------------

@router.get("/users/{user_id}/locations", response_model=LocationAssignmentsOut)
async def get_user_locations(user_id: int, org_id: int, db: DBDep, scope: ScopeDep):
    ids = await svc.get_location_assignments(db, scope, user_id, org_id)
    return {"principal_id": user_id, "org_id": org_id, "location_ids": ids}


@router.put("/users/{user_id}/locations", response_model=LocationAssignmentsOut)
async def set_user_locations(user_id: int, payload: LocationAssignmentsIn, db: DBDep, scope: ScopeDep):
    ids = await svc.set_location_assignments(
        db, scope, user_id,
        org_id=payload.org_id,
        location_ids=payload.location_ids,
    )
    return {"principal_id": user_id, "org_id": payload.org_id, "location_ids": ids}


# --- platform admins ----------------------------------------------------------

@router.post("/platform-admins", response_model=PrincipalOut)
async def set_platform_admin(payload: PlatformAdminIn, db: DBDep, current: PrincipalDep, scope: ScopeDep):
    p = await svc.set_platform_admin(
        db, scope, current,
        email=str(payload.email),
        admin_level=payload.admin_level,
        display_name=payload.display_name,
    )
    return PrincipalOut(**serialize_principal(p))


# --- shared reports -----------------------------------------------------------

@router.post("/reports/share", response_model=ReportShareOut)
async def share_report(payload: ReportShareIn, current: PrincipalDep, scope: ScopeDep):
    scope.require_platform_admin(write=True)
    notifications.share_report(
        str(payload.recipient_email),
        sender_name=current.display_name or "Care Portal",
        reply_to=current.email,
        report_html=payload.report_html,
        org_name=payload.org_name,
        date_range=payload.date_range,
        recipient_name=payload.recipient_name,
    )
    return {"success": True, "message": f"Report sent to {payload.recipient_email}"}
