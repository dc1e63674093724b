# careportal/api/routes/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from sqlalchemy import select

from careportal.core.errors import Forbidden, Unauthorized
from careportal.core.logging import log_extra
from careportal.db.models import Membership
from careportal.schemas.auth import LoginIn, MeOut, PrincipalOut, TokenOut
from careportal.services.auth import authenticate, make_token_for_principal, serialize_principal

from ..deps import DBDep, PrincipalDep, ScopeDep

router = APIRouter()
log = logging.getLogger(__name__)


# ===== login / me =====

@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, request: Request, db: DBDep):
    principal = await authenticate(db, email=str(payload.username), password=payload.password or "")
    if principal is None:
        # one answer for unknown email, wrong password and deactivated account
        log.info("login failed", extra=log_extra(request))
        raise Unauthorized("Invalid email or password")

    token = make_token_for_principal(principal, remember_me=bool(payload.remember_me))
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": PrincipalOut(**serialize_principal(principal)),
    }


@router.get("/me", response_model=MeOut)
async def me(db: DBDep, current: PrincipalDep, scope: ScopeDep):
    memberships = (
        await db.execute(select(Membership).where(Membership.principal_id == current.id).order_by(Membership.org_id))
    ).scalars().all()
    try:
        tier = scope.resolve().tier.value
    except Forbidden:
        # signed in but not attached to any organization yet
        tier = None
    return {
        "user": PrincipalOut(**serialize_principal(current)),
        "memberships": memberships,
        "scope": {
            "tier": tier or "none",
            "can_write": scope.can_write,
            "admin_org_ids": sorted(scope.admin_org_ids),
            "member_org_ids": sorted(scope.member_org_ids),
            "location_ids": sorted(scope.assigned_locations),
        },
    }
