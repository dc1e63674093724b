"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

admin_level_enum = sa.Enum("super_admin", "technician", "read_only", name="admin_level_enum")
membership_role_enum = sa.Enum("org_admin", "employee", name="membership_role_enum")
hardware_status_enum = sa.Enum(
    "active", "inactive", "maintenance", "decommissioned", "retired", name="hardware_status_enum"
)
priority_enum = sa.Enum("low", "normal", "high", "urgent", name="priority_enum")
ticket_status_enum = sa.Enum(
    "open", "in_progress", "resolved", "closed", "cancelled", name="ticket_status_enum"
)
ticket_event_type_enum = sa.Enum(
    "created", "status_changed", "assigned", "comment_added", "attachment_added",
    "priority_changed", "updated",
    name="ticket_event_type_enum",
)
notification_type_enum = sa.Enum(
    "ticket_assigned", "ticket_comment", "ticket_status_changed", "ticket_created",
    "ticket_priority_changed",
    name="notification_type_enum",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ---------- identity & tenancy ----------
    op.create_table(
        "principals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_platform_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("admin_level", admin_level_enum, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_principals_email", "principals", ["email"], unique=True)

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("ticket_seq", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("principal_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", membership_role_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("principal_id", "org_id", name="uq_memberships_principal_org"),
    )
    op.create_index("ix_memberships_principal_id", "memberships", ["principal_id"])
    op.create_index("ix_memberships_org_id", "memberships", ["org_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_locations_org_id", "locations", ["org_id"])

    op.create_table(
        "location_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("principal_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("principal_id", "location_id", name="uq_location_assignments_principal_location"),
    )
    op.create_index("ix_location_assignments_principal_id", "location_assignments", ["principal_id"])
    op.create_index("ix_location_assignments_location_id", "location_assignments", ["location_id"])

    # ---------- hardware & procedures ----------
    op.create_table(
        "hardware",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("hardware_type", sa.String(128), nullable=False),
        sa.Column("manufacturer", sa.String(255), nullable=True),
        sa.Column("model_number", sa.String(255), nullable=True),
        sa.Column("serial_number", sa.String(255), nullable=True),
        sa.Column("status", hardware_status_enum, nullable=False, server_default="active"),
        sa.Column("installation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warranty_expiration", sa.DateTime(timezone=True), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_hardware_org_id", "hardware", ["org_id"])
    op.create_index("ix_hardware_location_id", "hardware", ["location_id"])

    op.create_table(
        "sops",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("hardware_type", sa.String(128), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("principals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_sops_org_id", "sops", ["org_id"])

    op.create_table(
        "hardware_sops",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hardware_id", sa.Integer(), sa.ForeignKey("hardware.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sop_id", sa.Integer(), sa.ForeignKey("sops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("hardware_id", "sop_id", name="uq_hardware_sops_hardware_sop"),
    )
    op.create_index("ix_hardware_sops_hardware_id", "hardware_sops", ["hardware_id"])
    op.create_index("ix_hardware_sops_sop_id", "hardware_sops", ["sop_id"])

    op.create_table(
        "sop_acknowledgments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("principal_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hardware_id", sa.Integer(), sa.ForeignKey("hardware.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sop_versions", JSONType, nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sop_acknowledgments_principal_id", "sop_acknowledgments", ["principal_id"])
    op.create_index("ix_sop_acknowledgments_hardware_id", "sop_acknowledgments", ["hardware_id"])
    op.create_index(
        "ix_sop_ack_principal_hardware", "sop_acknowledgments", ["principal_id", "hardware_id", "acknowledged_at"]
    )

    # ---------- tickets ----------
    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_number", sa.String(32), nullable=False),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hardware_id", sa.Integer(), sa.ForeignKey("hardware.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", priority_enum, nullable=False, server_default="normal"),
        sa.Column("status", ticket_status_enum, nullable=False, server_default="open"),
        sa.Column("submitted_by", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("principals.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "sop_acknowledgment_id",
            sa.Integer(),
            sa.ForeignKey("sop_acknowledgments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sop_acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_sop_ids", JSONType, nullable=False),
        sa.Column("first_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_summary", sa.Text(), nullable=True),
        sa.Column("customer_satisfaction_rating", sa.Integer(), nullable=True),
        sa.Column("customer_satisfaction_feedback", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "customer_satisfaction_rating IS NULL OR customer_satisfaction_rating BETWEEN 1 AND 5",
            name="ck_tickets_satisfaction_range",
        ),
        sa.UniqueConstraint("org_id", "ticket_number", name="uq_tickets_org_number"),
    )
    op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"])
    op.create_index("ix_tickets_org_id", "tickets", ["org_id"])
    op.create_index("ix_tickets_location_id", "tickets", ["location_id"])
    op.create_index("ix_tickets_hardware_id", "tickets", ["hardware_id"])
    op.create_index("ix_tickets_submitted_by", "tickets", ["submitted_by"])
    op.create_index("ix_tickets_assigned_to", "tickets", ["assigned_to"])
    op.create_index("ix_tickets_status_priority", "tickets", ["status", "priority"])
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"])

    op.create_table(
        "ticket_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", ticket_event_type_enum, nullable=False),
        sa.Column("old_value", sa.String(255), nullable=True),
        sa.Column("new_value", sa.String(255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_events_ticket_id", "ticket_events", ["ticket_id"])
    op.create_index("ix_ticket_events_ticket_created", "ticket_events", ["ticket_id", "created_at"])

    op.create_table(
        "ticket_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"])
    op.create_index("ix_ticket_comments_author_id", "ticket_comments", ["author_id"])

    # ---------- side effects ----------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "related_principal_id",
            sa.Integer(),
            sa.ForeignKey("principals.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_ticket_id", "notifications", ["ticket_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("principals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("org_id", sa.Integer(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("payload", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_ticket_id", "audit_log", ["ticket_id"])
    op.create_index("ix_audit_log_org_id", "audit_log", ["org_id"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "notifications",
        "ticket_comments",
        "ticket_events",
        "tickets",
        "sop_acknowledgments",
        "hardware_sops",
        "sops",
        "hardware",
        "location_assignments",
        "locations",
        "memberships",
        "organizations",
        "principals",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (
        notification_type_enum,
        ticket_event_type_enum,
        ticket_status_enum,
        priority_enum,
        hardware_status_enum,
        membership_role_enum,
        admin_level_enum,
    ):
        enum.drop(bind, checkfirst=True)
