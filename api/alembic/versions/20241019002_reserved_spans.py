"""Buffered reserved spans, unassigned booking guard and professional hours."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20241019002"
down_revision = "20241019001"
branch_labels = None
depends_on = None

UNASSIGNED_LIVE_CLAUSE = (
    "status IN ('SCHEDULED', 'CONFIRMED') "
    "AND professional_id IS NULL AND resource_id IS NULL"
)


def upgrade() -> None:
    op.add_column(
        "appointments", sa.Column("reserved_start", sa.DateTime(timezone=True), nullable=True)
    )
    op.add_column(
        "appointments", sa.Column("reserved_end", sa.DateTime(timezone=True), nullable=True)
    )
    op.execute(
        """
        UPDATE appointments AS a
        SET reserved_start = a.start_time - make_interval(mins => s.buffer_before_minutes),
            reserved_end = a.end_time + make_interval(mins => s.buffer_after_minutes)
        FROM services AS s
        WHERE s.id = a.service_id
        """
    )
    op.alter_column("appointments", "reserved_start", nullable=False)
    op.alter_column("appointments", "reserved_end", nullable=False)
    op.create_index(
        "ix_appointments_tenant_reserved",
        "appointments",
        ["tenant_id", "reserved_start", "reserved_end"],
    )
    op.create_index(
        "uq_appointments_live_unassigned_start",
        "appointments",
        ["tenant_id", "start_time"],
        unique=True,
        postgresql_where=sa.text(UNASSIGNED_LIVE_CLAUSE),
    )

    op.create_table(
        "professional_hours",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
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
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("professional_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("weekday", sa.SmallInteger(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.id"],
            ondelete="CASCADE",
            name="fk_professional_hours_tenant_id_tenants",
        ),
        sa.ForeignKeyConstraint(
            ["professional_id"],
            ["professionals.id"],
            ondelete="CASCADE",
            name="fk_professional_hours_professional_id_professionals",
        ),
        sa.UniqueConstraint(
            "professional_id", "weekday", name="uq_professional_hours_professional_weekday"
        ),
        sa.CheckConstraint(
            "weekday BETWEEN 0 AND 6", name="ck_professional_hours_weekday_range"
        ),
        sa.CheckConstraint(
            "NOT enabled OR start_time < end_time",
            name="ck_professional_hours_start_before_end",
        ),
    )
    op.create_index("ix_professional_hours_tenant_id", "professional_hours", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_professional_hours_tenant_id", table_name="professional_hours")
    op.drop_table("professional_hours")
    op.drop_index("uq_appointments_live_unassigned_start", table_name="appointments")
    op.drop_index("ix_appointments_tenant_reserved", table_name="appointments")
    op.drop_column("appointments", "reserved_end")
    op.drop_column("appointments", "reserved_start")
