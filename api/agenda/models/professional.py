from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    SmallInteger,
    String,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin
from agenda.models.service import service_professionals


class Professional(Base, TenantScopedMixin, TimestampMixin):
    """Staff member who performs services."""

    __tablename__ = "professionals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    services: Mapped[list["Service"]] = relationship(  # noqa: F821
        secondary=service_professionals, back_populates="professionals"
    )
    working_hours: Mapped[list["ProfessionalHours"]] = relationship(
        back_populates="professional", cascade="all, delete-orphan"
    )


class ProfessionalHours(Base, TenantScopedMixin, TimestampMixin):
    """A professional's own weekly window; it narrows the business hours of that weekday."""

    __tablename__ = "professional_hours"
    __table_args__ = (
        UniqueConstraint(
            "professional_id", "weekday", name="uq_professional_hours_professional_weekday"
        ),
        CheckConstraint("weekday BETWEEN 0 AND 6", name="weekday_range"),
        CheckConstraint(
            "NOT enabled OR start_time < end_time", name="start_before_end"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    professional_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False
    )
    weekday: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    professional: Mapped[Professional] = relationship(back_populates="working_hours")
