from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin

LIVE_STATUS_CLAUSE = "status IN ('SCHEDULED', 'CONFIRMED')"
UNASSIGNED_LIVE_CLAUSE = (
    f"{LIVE_STATUS_CLAUSE} AND professional_id IS NULL AND resource_id IS NULL"
)


class AppointmentStatus(str, enum.Enum):
    """Possible statuses for an appointment lifecycle."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


LIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class AppointmentCreator(str, enum.Enum):
    """Who created the appointment."""

    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"
    CLIENT = "CLIENT"
    AI = "AI"


class Appointment(Base, TenantScopedMixin, TimestampMixin):
    """Booked span of a service for a professional and/or resource."""

    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_live_professional_start",
            "professional_id",
            "start_time",
            unique=True,
            postgresql_where=text(LIVE_STATUS_CLAUSE),
            sqlite_where=text(LIVE_STATUS_CLAUSE),
        ),
        Index(
            "uq_appointments_live_resource_start",
            "resource_id",
            "start_time",
            unique=True,
            postgresql_where=text(LIVE_STATUS_CLAUSE),
            sqlite_where=text(LIVE_STATUS_CLAUSE),
        ),
        Index(
            "uq_appointments_live_unassigned_start",
            "tenant_id",
            "start_time",
            unique=True,
            postgresql_where=text(UNASSIGNED_LIVE_CLAUSE),
            sqlite_where=text(UNASSIGNED_LIVE_CLAUSE),
        ),
        Index("ix_appointments_tenant_start", "tenant_id", "start_time"),
        Index("ix_appointments_tenant_reserved", "tenant_id", "reserved_start", "reserved_end"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="RESTRICT"), nullable=False
    )
    professional_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="SET NULL"), nullable=True
    )
    resource_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("resources.id", ondelete="SET NULL"), nullable=True
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    recurrence_group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Stored span widened by the service buffers at booking time; conflict checks use it.
    reserved_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reserved_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    created_by: Mapped[AppointmentCreator] = mapped_column(
        Enum(AppointmentCreator, name="appointment_creator"),
        default=AppointmentCreator.ADMIN,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_by: Mapped[str | None] = mapped_column(String(255))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(255))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    no_show_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmation_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    second_reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    service: Mapped["Service"] = relationship()  # noqa: F821
    professional: Mapped["Professional | None"] = relationship()  # noqa: F821
    resource: Mapped["Resource | None"] = relationship()  # noqa: F821
    client: Mapped["Client | None"] = relationship()  # noqa: F821

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES
