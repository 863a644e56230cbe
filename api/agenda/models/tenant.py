from __future__ import annotations

import uuid

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Tenant (company) owning its own services, staff and appointments."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="America/Sao_Paulo")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    schedule_settings: Mapped["ScheduleSettings | None"] = relationship(  # noqa: F821
        back_populates="tenant", uselist=False
    )
