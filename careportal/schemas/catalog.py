# careportal/schemas/catalog.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from careportal.db.models import HardwareStatusEnum


# ---- locations ----

class LocationCreate(BaseModel):
    org_id: int
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=128)
    timezone: str = Field(default="UTC", max_length=64)
    internal_notes: Optional[str] = None


class LocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    org_id: int
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    timezone: str
    internal_notes: Optional[str] = None
    created_at: datetime


# ---- hardware ----

class HardwareCreate(BaseModel):
    location_id: int
    name: str = Field(..., min_length=1, max_length=255)
    hardware_type: str = Field(..., min_length=1, max_length=128)
    manufacturer: Optional[str] = Field(default=None, max_length=255)
    model_number: Optional[str] = Field(default=None, max_length=255)
    serial_number: Optional[str] = Field(default=None, max_length=255)
    status: HardwareStatusEnum = HardwareStatusEnum.active
    installation_date: Optional[datetime] = None
    warranty_expiration: Optional[datetime] = None
    internal_notes: Optional[str] = None


class HardwareOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    org_id: int
    location_id: int
    name: str
    hardware_type: str
    manufacturer: Optional[str] = None
    model_number: Optional[str] = None
    serial_number: Optional[str] = None
    status: HardwareStatusEnum
    installation_date: Optional[datetime] = None
    warranty_expiration: Optional[datetime] = None
    internal_notes: Optional[str] = None
    created_at: datetime


# ---- troubleshooting procedures ----

class SOPCreate(BaseModel):
    org_id: int
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    hardware_type: Optional[str] = Field(default=None, max_length=128)
    is_active: bool = True
    hardware_ids: list[int] = []


class SOPUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    hardware_type: Optional[str] = Field(default=None, max_length=128)
    is_active: Optional[bool] = None
    # None keeps the current links, a list replaces them
    hardware_ids: Optional[list[int]] = None


class SOPOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    org_id: int
    title: str
    content: str
    hardware_type: Optional[str] = None
    version: int
    is_active: bool
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    hardware_ids: list[int] = []


class SOPAcknowledgmentIn(BaseModel):
    sop_ids: list[int] = Field(..., min_length=1)
    scrolled_to_end: bool
    confirmed: bool


class SOPAcknowledgmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    principal_id: int
    hardware_id: int
    sop_versions: dict[str, int]
    acknowledged_at: datetime
