from __future__ import annotations

from celery import Celery

from agenda_jobs.config import settings

celery_app = Celery(
    "agenda",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["agenda_jobs.tasks"],
)

celery_app.conf.timezone = settings.timezone
celery_app.conf.broker_connection_retry_on_startup = True
celery_app.conf.beat_schedule = {
    "dispatch-booking-notices": {
        "task": "agenda_jobs.dispatch_booking_notices",
        "schedule": float(settings.notice_sweep_seconds),
    },
    "dispatch-due-reminders": {
        "task": "agenda_jobs.dispatch_due_reminders",
        "schedule": float(settings.reminder_sweep_seconds),
    },
    "flag-no-shows": {
        "task": "agenda_jobs.flag_no_shows",
        "schedule": float(settings.no_show_sweep_seconds),
    },
}
