# careportal/schemas/tickets.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from careportal.db.models import (
    PriorityEnum as Priority,
    TicketEventTypeEnum as EventType,
    TicketStatusEnum as Status,
)


class TicketCreate(BaseModel):
    location_id: int
    # optional; must match the location's organization when given
    org_id: Optional[int] = None
    hardware_id: Optional[int] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    priority: Priority = Field(default=Priority.normal)


class TicketUpdate(BaseModel):
    """Descriptive fields only. Status and assignment go through their own endpoints."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[Priority] = None


class StatusChangeIn(BaseModel):
    status: Status
    comment: Optional[str] = Field(default=None, max_length=10_000)


class AssignIn(BaseModel):
    assigned_to: Optional[int] = None


class SatisfactionIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=5_000)


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_number: str
    org_id: int
    location_id: int
    hardware_id: Optional[int] = None
    title: str
    description: str
    priority: Priority
    status: Status
    submitted_by: int
    assigned_to: Optional[int] = None
    sop_acknowledgment_id: Optional[int] = None
    sop_acknowledged_at: Optional[datetime] = None
    acknowledged_sop_ids: list[int] = []
    created_at: datetime
    updated_at: datetime
    first_response_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_summary: Optional[str] = None
    customer_satisfaction_rating: Optional[int] = None
    customer_satisfaction_feedback: Optional[str] = None


class TicketEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    ticket_id: int
    actor_id: Optional[int] = None
    event_type: EventType
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    comment: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime


class SummaryOut(BaseModel):
    ticket_id: int
    summary: str


class BatchSummaryError(BaseModel):
    ticket_id: int
    ticket_number: str
    error: str


class BatchSummaryOut(BaseModel):
    total: int
    successful: int
    failed: int
    skipped: int
    errors: list[BatchSummaryError] = []


class CommentCreate(BaseModel):
    body: str = Field(min_length=1, max_length=10_000)
    # staff-only note, hidden from the submitter and from summaries
    is_internal: bool = False


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    author_id: int
    body: str
    is_internal: bool
    created_at: datetime
