from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from celery.utils.log import get_task_logger
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from agenda.db.session import session_scope
from agenda.logging_utils import tenant_context
from agenda.models import LIVE_STATUSES, Appointment, ScheduleSettings, Tenant
from agenda.services.clock import ensure_utc, tenant_timezone, utc_now
from agenda.services.reminders import due_reminders, notification_payload
from agenda.services.scheduling import record_transition
from agenda.services.state_machine import BookingStateMachine
from agenda_jobs.celery_app import celery_app
from agenda_jobs.config import settings

logger = get_task_logger(__name__)


def _hand_off(payload: dict[str, Any]) -> None:
    """Queue a notification event for the external messaging worker."""

    celery_app.send_task(settings.notification_task_name, kwargs=payload)


class _TenantCache:
    def __init__(self, db: Session) -> None:
        self.db = db
        self._zones: dict[UUID, ZoneInfo] = {}
        self._settings: dict[UUID, ScheduleSettings | None] = {}

    def zone(self, tenant_id: UUID) -> ZoneInfo:
        if tenant_id not in self._zones:
            self._zones[tenant_id] = tenant_timezone(self.db.get(Tenant, tenant_id))
        return self._zones[tenant_id]

    def schedule_settings(self, tenant_id: UUID) -> ScheduleSettings | None:
        if tenant_id not in self._settings:
            self._settings[tenant_id] = self.db.execute(
                select(ScheduleSettings).where(ScheduleSettings.tenant_id == tenant_id)
            ).scalar_one_or_none()
        return self._settings[tenant_id]


def _live_upcoming(db: Session, now: datetime, *criteria) -> list[Appointment]:
    stmt = (
        select(Appointment)
        .where(
            Appointment.status.in_(LIVE_STATUSES),
            Appointment.start_time > now,
            *criteria,
        )
        .order_by(Appointment.start_time)
    )
    return list(db.execute(stmt).scalars())


def send_booking_notices(db: Session, now: datetime) -> int:
    now = ensure_utc(now)
    tenants = _TenantCache(db)
    sent = 0
    for appointment in _live_upcoming(
        db, now, Appointment.confirmation_sent_at.is_(None)
    ):
        with tenant_context(appointment.tenant_id):
            _hand_off(
                notification_payload(
                    appointment,
                    "booked",
                    tz=tenants.zone(appointment.tenant_id),
                    schedule_settings=tenants.schedule_settings(appointment.tenant_id),
                )
            )
            appointment.confirmation_sent_at = now
            sent += 1
            logger.info(
                "booking notice handed off",
                extra={"appointment_id": str(appointment.id)},
            )
    return sent


def send_due_reminders(db: Session, now: datetime) -> int:
    now = ensure_utc(now)
    tenants = _TenantCache(db)
    sent = 0
    pending = _live_upcoming(
        db,
        now,
        or_(
            Appointment.reminder_sent_at.is_(None),
            Appointment.second_reminder_sent_at.is_(None),
        ),
    )
    for appointment in pending:
        with tenant_context(appointment.tenant_id):
            schedule_settings = tenants.schedule_settings(appointment.tenant_id)
            reminders = due_reminders(appointment, schedule_settings, now)
            for reminder in reminders:
                _hand_off(
                    notification_payload(
                        appointment,
                        reminder.kind,
                        tz=tenants.zone(appointment.tenant_id),
                        schedule_settings=schedule_settings,
                    )
                )
                setattr(appointment, reminder.sent_field, now)
                sent += 1
                logger.info(
                    "reminder handed off",
                    extra={"appointment_id": str(appointment.id), "kind": reminder.kind},
                )
    return sent


def mark_no_shows(db: Session, now: datetime, grace: timedelta) -> int:
    """Move live appointments that ended more than ``grace`` ago to NO_SHOW."""

    now = ensure_utc(now)
    stmt = (
        select(Appointment)
        .where(
            Appointment.status.in_(LIVE_STATUSES),
            Appointment.end_time < now - grace,
        )
        .with_for_update()
    )
    flagged = 0
    for appointment in db.execute(stmt).scalars():
        with tenant_context(appointment.tenant_id):
            transition = BookingStateMachine(appointment).mark_no_show(
                at=now, actor="system"
            )
            record_transition(db, appointment, transition)
            flagged += 1
            logger.warning(
                "appointment flagged as no-show",
                extra={"appointment_id": str(appointment.id)},
            )
    return flagged


@celery_app.task(name="agenda_jobs.dispatch_booking_notices")
def dispatch_booking_notices() -> dict[str, int]:
    with session_scope() as db:
        sent = send_booking_notices(db, utc_now())
    return {"sent": sent}


@celery_app.task(name="agenda_jobs.dispatch_due_reminders")
def dispatch_due_reminders() -> dict[str, int]:
    """Hand off every reminder whose window opened since the last sweep."""

    with session_scope() as db:
        sent = send_due_reminders(db, utc_now())
    return {"sent": sent}


@celery_app.task(name="agenda_jobs.flag_no_shows")
def flag_no_shows() -> dict[str, int]:
    grace = timedelta(minutes=settings.no_show_grace_minutes)
    with session_scope() as db:
        flagged = mark_no_shows(db, utc_now(), grace)
    return {"flagged": flagged}
