"""Initial agenda schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20241019001"
down_revision = None
branch_labels = None
depends_on = None

LIVE_STATUS_CLAUSE = "status IN ('SCHEDULED', 'CONFIRMED')"

appointment_status_enum = postgresql.ENUM(
    "SCHEDULED", "CONFIRMED", "COMPLETED", "CANCELLED", "NO_SHOW",
    name="appointment_status",
    create_type=False,
)
appointment_creator_enum = postgresql.ENUM(
    "SYSTEM", "ADMIN", "CLIENT", "AI",
    name="appointment_creator",
    create_type=False,
)


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _tenant_fk(table: str) -> list:
    return [
        _uuid("tenant_id", nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.id"],
            ondelete="CASCADE",
            name=f"fk_{table}_tenant_id_tenants",
        ),
    ]


def upgrade() -> None:
    appointment_status_enum.create(op.get_bind(), checkfirst=True)
    appointment_creator_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "tenants",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "timezone",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'America/Sao_Paulo'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_tenants_name"),
    )

    op.create_table(
        "schedule_settings",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("schedule_settings"),
        sa.Column("block_holidays", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("saturday_enabled", sa.Boolean(), nullable=True),
        sa.Column("saturday_start", sa.Time(), nullable=True),
        sa.Column("saturday_end", sa.Time(), nullable=True),
        sa.Column("sunday_enabled", sa.Boolean(), nullable=True),
        sa.Column("sunday_start", sa.Time(), nullable=True),
        sa.Column("sunday_end", sa.Time(), nullable=True),
        sa.Column("min_advance_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reminder_hours_before", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("second_reminder_minutes", sa.Integer(), nullable=True),
        sa.Column(
            "require_confirmation", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.UniqueConstraint("tenant_id", name="uq_schedule_settings_tenant_id"),
    )

    op.create_table(
        "business_hours",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("business_hours"),
        sa.Column("weekday", sa.SmallInteger(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.UniqueConstraint("tenant_id", "weekday", name="uq_business_hours_tenant_weekday"),
        sa.CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_business_hours_weekday_range"),
        sa.CheckConstraint(
            "NOT enabled OR start_time < end_time",
            name="ck_business_hours_start_before_end",
        ),
    )
    op.create_index("ix_business_hours_tenant_id", "business_hours", ["tenant_id"])

    op.create_table(
        "holidays",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        _uuid("tenant_id", nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(
            ["tenant_id"], ["tenants.id"], ondelete="CASCADE", name="fk_holidays_tenant_id_tenants"
        ),
    )
    op.create_index("ix_holidays_tenant_id", "holidays", ["tenant_id"])

    op.create_table(
        "services",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("services"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("buffer_before_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("buffer_after_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "requires_resource", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("duration_minutes > 0", name="ck_services_positive_duration"),
        sa.CheckConstraint(
            "buffer_before_minutes >= 0 AND buffer_after_minutes >= 0",
            name="ck_services_non_negative_buffers",
        ),
    )
    op.create_index("ix_services_tenant_id", "services", ["tenant_id"])

    for table, extra in (
        ("professionals", [sa.Column("specialty", sa.String(length=255), nullable=True)]),
        ("resources", []),
    ):
        op.create_table(
            table,
            _uuid("id", primary_key=True, nullable=False),
            *_timestamps(),
            *_tenant_fk(table),
            sa.Column("name", sa.String(length=255), nullable=False),
            *extra,
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        )
        op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"])

    op.create_table(
        "service_professionals",
        _uuid("service_id", primary_key=True, nullable=False),
        _uuid("professional_id", primary_key=True, nullable=False),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["professional_id"], ["professionals.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "service_resources",
        _uuid("service_id", primary_key=True, nullable=False),
        _uuid("resource_id", primary_key=True, nullable=False),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resource_id"], ["resources.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "clients",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("clients"),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"])

    op.create_table(
        "appointments",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("appointments"),
        _uuid("service_id", nullable=False),
        _uuid("professional_id", nullable=True),
        _uuid("resource_id", nullable=True),
        _uuid("client_id", nullable=True),
        _uuid("recurrence_group_id", nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", appointment_status_enum, nullable=False),
        sa.Column("created_by", appointment_creator_enum, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmation_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("second_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["professional_id"], ["professionals.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["resource_id"], ["resources.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_appointments_tenant_id", "appointments", ["tenant_id"])
    op.create_index("ix_appointments_tenant_start", "appointments", ["tenant_id", "start_time"])
    op.create_index(
        "ix_appointments_recurrence_group_id", "appointments", ["recurrence_group_id"]
    )
    op.create_index(
        "uq_appointments_live_professional_start",
        "appointments",
        ["professional_id", "start_time"],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUS_CLAUSE),
    )
    op.create_index(
        "uq_appointments_live_resource_start",
        "appointments",
        ["resource_id", "start_time"],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUS_CLAUSE),
    )

    op.create_table(
        "appointment_activities",
        _uuid("id", primary_key=True, nullable=False),
        *_timestamps(),
        *_tenant_fk("appointment_activities"),
        _uuid("appointment_id", nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_appointment_activities_tenant_id", "appointment_activities", ["tenant_id"]
    )
    op.create_index(
        "ix_appointment_activities_appointment_id",
        "appointment_activities",
        ["appointment_id"],
    )


def downgrade() -> None:
    op.drop_table("appointment_activities")
    op.drop_index("uq_appointments_live_resource_start", table_name="appointments")
    op.drop_index("uq_appointments_live_professional_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("clients")
    op.drop_table("service_resources")
    op.drop_table("service_professionals")
    op.drop_table("resources")
    op.drop_table("professionals")
    op.drop_table("services")
    op.drop_table("holidays")
    op.drop_table("business_hours")
    op.drop_table("schedule_settings")
    op.drop_table("tenants")
    appointment_creator_enum.drop(op.get_bind(), checkfirst=True)
    appointment_status_enum.drop(op.get_bind(), checkfirst=True)
