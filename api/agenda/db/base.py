"""Import SQLAlchemy models for Alembic's autogenerate feature."""

from agenda.models.base import Base
from agenda.models import (  # noqa: F401
    Appointment,
    AppointmentActivity,
    BusinessHoursEntry,
    Client,
    Holiday,
    Professional,
    ProfessionalHours,
    Resource,
    ScheduleSettings,
    Service,
    Tenant,
)

__all__ = [
    "Base",
    "Appointment",
    "AppointmentActivity",
    "BusinessHoursEntry",
    "Client",
    "Holiday",
    "Professional",
    "ProfessionalHours",
    "Resource",
    "ScheduleSettings",
    "Service",
    "Tenant",
]
