# careportal/db/models.py
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    String,
    Text,
    Integer,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    func,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from careportal.db.base import Base

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==== Enums (python + sqlalchemy) ====


class AdminLevelEnum(str, enum.Enum):
    super_admin = "super_admin"
    technician = "technician"
    read_only = "read_only"


class MembershipRoleEnum(str, enum.Enum):
    org_admin = "org_admin"
    employee = "employee"


class HardwareStatusEnum(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"
    decommissioned = "decommissioned"
    retired = "retired"


class PriorityEnum(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class TicketStatusEnum(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"
    cancelled = "cancelled"


class TicketEventTypeEnum(str, enum.Enum):
    created = "created"
    status_changed = "status_changed"
    assigned = "assigned"
    comment_added = "comment_added"
    attachment_added = "attachment_added"
    priority_changed = "priority_changed"
    updated = "updated"


class NotificationTypeEnum(str, enum.Enum):
    ticket_assigned = "ticket_assigned"
    ticket_comment = "ticket_comment"
    ticket_status_changed = "ticket_status_changed"
    ticket_created = "ticket_created"
    ticket_priority_changed = "ticket_priority_changed"


# ==== Mixins ====


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ==== Identity & tenancy ====


class Principal(TimestampMixin, Base):
    __tablename__ = "principals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_platform_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_level: Mapped[Optional[AdminLevelEnum]] = mapped_column(
        Enum(AdminLevelEnum, name="admin_level_enum"),
        nullable=True,
    )
    # soft state only; principals are never hard-deleted
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Principal id={self.id} email={self.email} platform_admin={self.is_platform_admin}>"


class Organization(TimestampMixin, Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    # backs sequential per-organization ticket numbers
    ticket_seq: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name}>"


class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    principal_id: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    org_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
    )
    role: Mapped[MembershipRoleEnum] = mapped_column(
        Enum(MembershipRoleEnum, name="membership_role_enum"),
        default=MembershipRoleEnum.employee,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("principal_id", "org_id", name="uq_memberships_principal_org"),
    )


class Location(TimestampMixin, Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class LocationAssignment(Base):
    __tablename__ = "location_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    principal_id: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="CASCADE"),
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("principal_id", "location_id", name="uq_location_assignments_principal_location"),
    )


# ==== Hardware & knowledge base ====


class Hardware(TimestampMixin, Base):
    __tablename__ = "hardware"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    hardware_type: Mapped[str] = mapped_column(String(128))
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    model_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # display/filtering only, never gates the ticket lifecycle
    status: Mapped[HardwareStatusEnum] = mapped_column(
        Enum(HardwareStatusEnum, name="hardware_status_enum"),
        default=HardwareStatusEnum.active,
        nullable=False,
    )
    installation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    warranty_expiration: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SOP(TimestampMixin, Base):
    """Troubleshooting procedure shown before a ticket can be filed."""

    __tablename__ = "sops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)
    hardware_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class HardwareSOP(Base):
    __tablename__ = "hardware_sops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hardware_id: Mapped[int] = mapped_column(
        ForeignKey("hardware.id", ondelete="CASCADE"),
        index=True,
    )
    sop_id: Mapped[int] = mapped_column(
        ForeignKey("sops.id", ondelete="CASCADE"),
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("hardware_id", "sop_id", name="uq_hardware_sops_hardware_sop"),
    )


class SOPAcknowledgment(Base):
    __tablename__ = "sop_acknowledgments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    principal_id: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    hardware_id: Mapped[int] = mapped_column(
        ForeignKey("hardware.id", ondelete="CASCADE"),
        index=True,
    )
    # {"<sop id>": <version>} at the moment of acknowledgment
    sop_versions: Mapped[dict] = mapped_column(JSONType, nullable=False)
    acknowledged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_sop_ack_principal_hardware", "principal_id", "hardware_id", "acknowledged_at"),
    )


# ==== Tickets ====


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(32), index=True)
    org_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="CASCADE"),
        index=True,
    )
    hardware_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("hardware.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    priority: Mapped[PriorityEnum] = mapped_column(
        Enum(PriorityEnum, name="priority_enum"),
        default=PriorityEnum.normal,
        nullable=False,
    )
    status: Mapped[TicketStatusEnum] = mapped_column(
        Enum(TicketStatusEnum, name="ticket_status_enum"),
        default=TicketStatusEnum.open,
        nullable=False,
    )
    submitted_by: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # gating
    sop_acknowledgment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sop_acknowledgments.id", ondelete="SET NULL"),
        nullable=True,
    )
    sop_acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_sop_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # set-once lifecycle timestamps
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # set-once after closure
    closed_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_satisfaction_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_satisfaction_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_tickets_status_priority", "status", "priority"),
        Index("ix_tickets_created_at", "created_at"),
        CheckConstraint(
            "customer_satisfaction_rating IS NULL OR customer_satisfaction_rating BETWEEN 1 AND 5",
            name="ck_tickets_satisfaction_range",
        ),
        # numbering restarts in every organization
        UniqueConstraint("org_id", "ticket_number", name="uq_tickets_org_number"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} number={self.ticket_number} status={self.status}>"


class TicketEvent(Base):
    """Append-only audit record; never updated or deleted on its own."""

    __tablename__ = "ticket_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        index=True,
    )
    actor_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_type: Mapped[TicketEventTypeEnum] = mapped_column(
        Enum(TicketEventTypeEnum, name="ticket_event_type_enum"),
        nullable=False,
    )
    old_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_ticket_events_ticket_created", "ticket_id", "created_at"),
    )


class TicketComment(Base):
    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        index=True,
    )
    author_id: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    body: Mapped[str] = mapped_column(Text)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


# ==== Side effects ====


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("principals.id", ondelete="CASCADE"),
        index=True,
    )
    type: Mapped[NotificationTypeEnum] = mapped_column(
        Enum(NotificationTypeEnum, name="notification_type_enum"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    ticket_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    related_principal_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True,
    )
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class AuditLog(Base):
    """Access-layer log of privileged operations; outlives the rows it mentions."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(64))
    # plain integer, not a foreign key: the ticket may no longer exist
    ticket_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    org_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


__all__: List[str] = [
    "AdminLevelEnum",
    "AuditLog",
    "Hardware",
    "HardwareSOP",
    "HardwareStatusEnum",
    "Location",
    "LocationAssignment",
    "Membership",
    "MembershipRoleEnum",
    "Notification",
    "NotificationTypeEnum",
    "Organization",
    "Principal",
    "PriorityEnum",
    "SOP",
    "SOPAcknowledgment",
    "Ticket",
    "TicketComment",
    "TicketEvent",
    "TicketEventTypeEnum",
    "TicketStatusEnum",
    "as_utc",
    "utcnow",
]
