from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    SmallInteger,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin


class BusinessHoursEntry(Base, TenantScopedMixin, TimestampMixin):
    """Weekly availability template row (weekday 0 = Monday)."""

    __tablename__ = "business_hours"
    __table_args__ = (
        UniqueConstraint("tenant_id", "weekday", name="uq_business_hours_tenant_weekday"),
        CheckConstraint("weekday BETWEEN 0 AND 6", name="weekday_range"),
        CheckConstraint(
            "NOT enabled OR start_time < end_time", name="start_before_end"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    weekday: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)


class ScheduleSettings(Base, TimestampMixin):
    """Per-tenant scheduling options: weekend overrides, holidays, notice, reminders."""

    __tablename__ = "schedule_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    block_holidays: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # A null *_enabled means "no override": the weekday template applies.
    saturday_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    saturday_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    saturday_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    sunday_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sunday_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    sunday_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    min_advance_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reminder_hours_before: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    second_reminder_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    require_confirmation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    tenant: Mapped["Tenant"] = relationship(back_populates="schedule_settings")  # noqa: F821
