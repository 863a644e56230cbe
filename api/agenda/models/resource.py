from __future__ import annotations

import uuid

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin
from agenda.models.service import service_resources


class Resource(Base, TenantScopedMixin, TimestampMixin):
    """Physical resource (room, chair, equipment) a service may require."""

    __tablename__ = "resources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    services: Mapped[list["Service"]] = relationship(  # noqa: F821
        secondary=service_resources, back_populates="resources"
    )
