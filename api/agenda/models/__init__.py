"""SQLAlchemy models for the Agenda API."""

from agenda.models.activity import AppointmentActivity
from agenda.models.appointment import (
    LIVE_STATUSES,
    Appointment,
    AppointmentCreator,
    AppointmentStatus,
)
from agenda.models.business_hours import BusinessHoursEntry, ScheduleSettings
from agenda.models.client import Client
from agenda.models.holiday import Holiday
from agenda.models.professional import Professional, ProfessionalHours
from agenda.models.resource import Resource
from agenda.models.service import Service, service_professionals, service_resources
from agenda.models.tenant import Tenant

__all__ = [
    "LIVE_STATUSES",
    "Appointment",
    "AppointmentActivity",
    "AppointmentCreator",
    "AppointmentStatus",
    "BusinessHoursEntry",
    "Client",
    "Holiday",
    "Professional",
    "ProfessionalHours",
    "Resource",
    "ScheduleSettings",
    "Service",
    "Tenant",
    "service_professionals",
    "service_resources",
]
