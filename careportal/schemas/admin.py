# careportal/schemas/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from careportal.db.models import AdminLevelEnum, MembershipRoleEnum, NotificationTypeEnum


# ---- organizations ----

class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    # optional first org admin, provisioned with a temporary password
    admin_email: Optional[EmailStr] = None
    admin_name: Optional[str] = Field(default=None, max_length=255)


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    created_at: datetime


class MemberIn(BaseModel):
    email: EmailStr
    role: MembershipRoleEnum = MembershipRoleEnum.employee
    display_name: Optional[str] = Field(default=None, max_length=255)


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    principal_id: int
    org_id: int
    role: MembershipRoleEnum


# ---- location assignments ----

class LocationAssignmentsIn(BaseModel):
    org_id: int
    location_ids: list[int]


class LocationAssignmentsOut(BaseModel):
    principal_id: int
    org_id: int
    location_ids: list[int]


# ---- report sharing ----

class ReportShareIn(BaseModel):
    recipient_email: EmailStr
    recipient_name: Optional[str] = Field(default=None, max_length=255)
    org_name: Optional[str] = Field(default=None, max_length=255)
    # days covered: 7, 30, 90; anything else is reported as annual
    date_range: str = "30"
    report_html: str = Field(..., min_length=1)


class ReportShareOut(BaseModel):
    success: bool
    message: str


# ---- platform admins ----

class PlatformAdminIn(BaseModel):
    email: EmailStr
    admin_level: AdminLevelEnum
    display_name: Optional[str] = Field(default=None, max_length=255)


# ---- notifications inbox ----

class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    type: NotificationTypeEnum
    title: str
    message: str
    ticket_id: Optional[int] = None
    related_principal_id: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class MarkReadIn(BaseModel):
    # omitted -> mark everything as read
    notification_ids: Optional[list[int]] = None
