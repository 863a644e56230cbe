"""Reminder planning and the payload handed to the notification worker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from agenda.models import Appointment, AppointmentStatus, ScheduleSettings
from agenda.services.clock import ensure_utc

DEFAULT_REMINDER_HOURS = 24


@dataclass(frozen=True)
class Reminder:
    kind: str
    due_at: datetime
    # Appointment column stamped once the reminder is handed off.
    sent_field: str


def plan_reminders(
    appointment: Appointment, schedule_settings: ScheduleSettings | None
) -> list[Reminder]:
    start = ensure_utc(appointment.start_time)
    hours_before = (
        schedule_settings.reminder_hours_before
        if schedule_settings is not None
        else DEFAULT_REMINDER_HOURS
    )
    reminders = [
        Reminder("reminder", start - timedelta(hours=hours_before), "reminder_sent_at")
    ]
    if schedule_settings is not None and schedule_settings.second_reminder_minutes:
        reminders.append(
            Reminder(
                "second_reminder",
                start - timedelta(minutes=schedule_settings.second_reminder_minutes),
                "second_reminder_sent_at",
            )
        )
    return reminders


def due_reminders(
    appointment: Appointment,
    schedule_settings: ScheduleSettings | None,
    now: datetime,
) -> list[Reminder]:
    """Reminders whose window opened, that were not sent, for a future live appointment."""

    now = ensure_utc(now)
    if not appointment.is_live or ensure_utc(appointment.start_time) <= now:
        return []
    # A window that had already opened when the booking was made is skipped.
    booked_at = ensure_utc(appointment.created_at) if appointment.created_at else None
    return [
        reminder
        for reminder in plan_reminders(appointment, schedule_settings)
        if reminder.due_at <= now
        and (booked_at is None or reminder.due_at > booked_at)
        and getattr(appointment, reminder.sent_field) is None
    ]


def notification_payload(
    appointment: Appointment,
    event: str,
    *,
    tz: ZoneInfo,
    schedule_settings: ScheduleSettings | None = None,
) -> dict[str, Any]:
    client = appointment.client
    professional = appointment.professional
    return {
        "event": event,
        "tenant_id": str(appointment.tenant_id),
        "appointment_id": str(appointment.id),
        "status": appointment.status.value,
        # The client still has to confirm this appointment.
        "confirmation_required": bool(
            schedule_settings is not None
            and schedule_settings.require_confirmation
            and appointment.status is AppointmentStatus.SCHEDULED
        ),
        "start_local": ensure_utc(appointment.start_time).astimezone(tz).isoformat(),
        "service": appointment.service.name if appointment.service else None,
        "professional": professional.name if professional else None,
        "client": {
            "name": client.full_name,
            "email": client.email,
            "phone_number": client.phone_number,
        }
        if client
        else None,
    }
