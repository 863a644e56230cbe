from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin

service_professionals = Table(
    "service_professionals",
    Base.metadata,
    Column(
        "service_id", Uuid, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True
    ),
    Column(
        "professional_id",
        Uuid,
        ForeignKey("professionals.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

service_resources = Table(
    "service_resources",
    Base.metadata,
    Column(
        "service_id", Uuid, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True
    ),
    Column(
        "resource_id", Uuid, ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True
    ),
)


class Service(Base, TenantScopedMixin, TimestampMixin):
    """Bookable service with its duration and protective buffers."""

    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="positive_duration"),
        CheckConstraint(
            "buffer_before_minutes >= 0 AND buffer_after_minutes >= 0",
            name="non_negative_buffers",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    buffer_before_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buffer_after_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    requires_resource: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    professionals: Mapped[list["Professional"]] = relationship(  # noqa: F821
        secondary=service_professionals, back_populates="services"
    )
    resources: Mapped[list["Resource"]] = relationship(  # noqa: F821
        secondary=service_resources, back_populates="services"
    )
