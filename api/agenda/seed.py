from __future__ import annotations

import logging
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.db.session import session_scope
from agenda.logging_utils import configure_logging, set_tenant_context
from agenda.models import (
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

logger = logging.getLogger(__name__)

TENANT_NAME = "Clínica Agenda Demo"

# name, duration, buffer before, buffer after, requires resource
SERVICE_CATALOG: list[tuple[str, int, int, int, bool]] = [
    ("Avaliação Odontológica", 30, 0, 0, False),
    ("Limpeza Profissional", 45, 0, 15, True),
    ("Clareamento Dental", 60, 15, 15, True),
]

PROFESSIONALS: list[tuple[str, str]] = [
    ("Dra. Ana Costa", "Ortodontista"),
    ("Dr. Bruno Lima", "Implantodontista"),
]

# Dr. Bruno only attends Tuesday and Thursday afternoons.
PART_TIME_HOURS: list[tuple[int, bool, time, time]] = [
    (weekday, weekday in (1, 3), time(13, 0), time(18, 0)) for weekday in range(5)
]

RESOURCES: list[str] = ["Consultório 1", "Consultório 2"]

CLIENTS: list[tuple[str, str, str]] = [
    ("Maria Silva", "maria.silva@example.com", "+5585987654321"),
    ("João Pereira", "joao.pereira@example.com", "+558593334455"),
]

# Monday to Friday 08:00-18:00, weekend closed unless overridden.
WEEKLY_HOURS: list[tuple[int, bool, time, time]] = [
    (weekday, weekday < 5, time(8, 0), time(18, 0)) for weekday in range(7)
]

NATIONAL_HOLIDAYS: list[tuple[date, str]] = [
    (date(2000, 1, 1), "Confraternização Universal"),
    (date(2000, 4, 21), "Tiradentes"),
    (date(2000, 9, 7), "Independência do Brasil"),
    (date(2000, 12, 25), "Natal"),
]


def _get_or_create(session: Session, model, defaults: dict | None = None, **lookup):
    instance = session.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if instance:
        return instance, False
    instance = model(**lookup, **(defaults or {}))
    session.add(instance)
    session.flush()
    return instance, True


def ensure_tenant(session: Session) -> Tenant:
    tenant, created = _get_or_create(
        session, Tenant, defaults={"timezone": settings.timezone}, name=TENANT_NAME
    )
    set_tenant_context(tenant.id)
    logger.info("ensured tenant", extra={"created": created})
    _get_or_create(
        session,
        ScheduleSettings,
        defaults={
            "block_holidays": True,
            "saturday_enabled": True,
            "saturday_start": time(8, 0),
            "saturday_end": time(12, 0),
            "min_advance_minutes": 60,
            "second_reminder_minutes": 120,
        },
        tenant_id=tenant.id,
    )
    return tenant


def ensure_business_hours(session: Session, tenant: Tenant) -> None:
    created = 0
    for weekday, enabled, start, end in WEEKLY_HOURS:
        _, was_created = _get_or_create(
            session,
            BusinessHoursEntry,
            defaults={"enabled": enabled, "start_time": start, "end_time": end},
            tenant_id=tenant.id,
            weekday=weekday,
        )
        created += was_created
    logger.info("ensured business hours", extra={"created": created})


def ensure_holidays(session: Session) -> None:
    created = 0
    for day, name in NATIONAL_HOLIDAYS:
        _, was_created = _get_or_create(
            session,
            Holiday,
            defaults={"date": day, "is_recurring": True},
            tenant_id=None,
            name=name,
        )
        created += was_created
    logger.info("ensured national holidays", extra={"created": created})


def ensure_staff(session: Session, tenant: Tenant) -> tuple[list[Professional], list[Resource]]:
    professionals = [
        _get_or_create(
            session,
            Professional,
            defaults={"specialty": specialty},
            tenant_id=tenant.id,
            name=name,
        )[0]
        for name, specialty in PROFESSIONALS
    ]
    for weekday, enabled, start, end in PART_TIME_HOURS:
        _get_or_create(
            session,
            ProfessionalHours,
            defaults={"enabled": enabled, "start_time": start, "end_time": end},
            tenant_id=tenant.id,
            professional_id=professionals[1].id,
            weekday=weekday,
        )
    resources = [
        _get_or_create(session, Resource, tenant_id=tenant.id, name=name)[0]
        for name in RESOURCES
    ]
    logger.info(
        "ensured staff",
        extra={"professionals": len(professionals), "resources": len(resources)},
    )
    return professionals, resources


def ensure_services(
    session: Session,
    tenant: Tenant,
    professionals: list[Professional],
    resources: list[Resource],
) -> list[Service]:
    services: list[Service] = []
    for name, duration, before, after, requires_resource in SERVICE_CATALOG:
        service, created = _get_or_create(
            session,
            Service,
            defaults={
                "duration_minutes": duration,
                "buffer_before_minutes": before,
                "buffer_after_minutes": after,
                "requires_resource": requires_resource,
            },
            tenant_id=tenant.id,
            name=name,
        )
        if created:
            service.professionals.extend(professionals)
            if requires_resource:
                service.resources.extend(resources)
        services.append(service)

    logger.info("ensured services", extra={"total": len(services)})
    return services


def ensure_clients(session: Session, tenant: Tenant) -> None:
    for name, email, phone in CLIENTS:
        _get_or_create(
            session,
            Client,
            defaults={"email": email, "phone_number": phone},
            tenant_id=tenant.id,
            full_name=name,
        )
    logger.info("ensured clients", extra={"total": len(CLIENTS)})


def seed() -> None:
    configure_logging()
    logger.info("starting seed process")

    with session_scope() as session:
        tenant = ensure_tenant(session)
        ensure_business_hours(session, tenant)
        ensure_holidays(session)
        professionals, resources = ensure_staff(session, tenant)
        ensure_services(session, tenant, professionals, resources)
        ensure_clients(session, tenant)

    logger.info("seed complete")


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    seed()
