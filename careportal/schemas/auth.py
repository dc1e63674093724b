# careportal/schemas/auth.py
from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr

from careportal.db.models import AdminLevelEnum, MembershipRoleEnum


class LoginIn(BaseModel):
    username: EmailStr
    password: str
    # longer-lived session
    remember_me: bool | None = None


class PrincipalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    email: str
    display_name: str | None = None
    is_platform_admin: bool = False
    admin_level: Optional[AdminLevelEnum] = None
    is_active: bool | None = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: PrincipalOut


class MembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    org_id: int
    role: MembershipRoleEnum


class ScopeOut(BaseModel):
    tier: str
    can_write: bool
    admin_org_ids: list[int]
    member_org_ids: list[int]
    location_ids: list[int]


class MeOut(BaseModel):
    user: PrincipalOut
    memberships: list[MembershipOut]
    scope: ScopeOut
