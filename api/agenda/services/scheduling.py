"""Scheduling orchestration: availability, booking and lifecycle changes."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.core.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PartialRecurrenceFailure,
    SchedulingError,
    TransitionError,
    ValidationError,
)
from agenda.logging_utils import set_tenant_context
from agenda.models import (
    Appointment,
    AppointmentActivity,
    AppointmentCreator,
    AppointmentStatus,
    Professional,
    Resource,
    Service,
    Tenant,
)
from agenda.services.calendar import BusinessCalendar, load_calendar
from agenda.services.catalog import ServiceCatalog
from agenda.services.clock import ensure_utc, localize, tenant_timezone, utc_now
from agenda.services.conflicts import AnnotatedSlot, AssignmentTarget, annotate
from agenda.services.recurrence import RecurrenceConfig, RecurrencePolicy, expand
from agenda.services.slots import ServiceSpan, Slot, generate_slots
from agenda.services.state_machine import INITIAL_STATUS, BookingStateMachine, Transition
from agenda.services.store import AppointmentStore

logger = logging.getLogger(__name__)


class AppointmentAction(str, enum.Enum):
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"
    NO_SHOW = "no-show"


@dataclass
class BookingRequest:
    """What a caller asks to book; ``start`` is tenant wall time when naive."""

    service_id: UUID
    start: datetime
    professional_id: UUID | None = None
    resource_id: UUID | None = None
    client_id: UUID | None = None
    created_by: AppointmentCreator = AppointmentCreator.ADMIN
    notes: str | None = None
    actor: str | None = None
    public_only: bool = False


@dataclass
class DayAvailability:
    date: date
    timezone: ZoneInfo
    slots: list[AnnotatedSlot]
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "timezone": self.timezone.key,
            "reason": self.reason,
            "results": [slot.as_dict() for slot in self.slots],
        }


@dataclass
class OccurrenceResult:
    index: int
    start: datetime
    appointment: Appointment | None = None
    error: SchedulingError | None = None
    rolled_back: bool = False

    @property
    def status(self) -> str:
        if self.rolled_back:
            return "rolled_back"
        return "booked" if self.appointment is not None else "failed"


@dataclass
class RecurrenceOutcome:
    group_id: UUID
    policy: RecurrencePolicy
    end_date: date
    occurrences: list[OccurrenceResult] = field(default_factory=list)

    @property
    def booked(self) -> list[OccurrenceResult]:
        return [item for item in self.occurrences if item.status == "booked"]

    @property
    def failed(self) -> list[OccurrenceResult]:
        return [item for item in self.occurrences if item.status == "failed"]

    @property
    def partial(self) -> bool:
        return bool(self.failed) and bool(self.booked)


@dataclass
class BookingContext:
    """Everything one booking or availability query needs, loaded once."""

    tenant: Tenant
    tz: ZoneInfo
    calendar: BusinessCalendar
    service: Service
    span: ServiceSpan
    professional: Professional | None
    # Candidates in preference order; [None] when the booking needs no resource.
    resources: list[Resource | None]
    min_advance: timedelta

    def targets(self, resource: Resource | None) -> set[AssignmentTarget]:
        targets: set[AssignmentTarget] = set()
        if self.professional is not None:
            targets.add(AssignmentTarget.professional(self.professional.id))
        if resource is not None:
            targets.add(AssignmentTarget.resource(resource.id))
        if not targets:
            targets.add(AssignmentTarget.unassigned())
        return targets


def _open_context(
    db: Session,
    catalog: ServiceCatalog,
    tenant: Tenant,
    *,
    service_id: UUID,
    professional_id: UUID | None,
    resource_id: UUID | None,
    public_only: bool = False,
) -> BookingContext:
    service = catalog.service(service_id, public_only=public_only)
    span = ServiceSpan.of(service)
    professional = (
        catalog.professional_for(service, professional_id) if professional_id else None
    )

    resources: list[Resource | None]
    if resource_id:
        resources = [catalog.resource_for(service, resource_id)]
    elif service.requires_resource:
        resources = list(catalog.eligible_resources(service))
    else:
        resources = [None]

    schedule_settings = catalog.settings()
    min_advance = timedelta(
        minutes=schedule_settings.min_advance_minutes if schedule_settings else 0
    )
    return BookingContext(
        tenant=tenant,
        tz=tenant_timezone(tenant),
        calendar=load_calendar(
            db, tenant.id, professional_id=professional.id if professional else None
        ),
        service=service,
        span=span,
        professional=professional,
        resources=resources,
        min_advance=min_advance,
    )


def _day_bounds(target_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(target_date, time.min, tzinfo=tz)
    end = datetime.combine(target_date + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def day_availability(
    db: Session,
    *,
    tenant_id: UUID,
    service_id: UUID,
    target_date: date,
    professional_id: UUID | None = None,
    resource_id: UUID | None = None,
    now: datetime | None = None,
    public_only: bool = False,
) -> DayAvailability:
    """Candidate slots for a day, each tagged available or blocked.

    Configuration problems (missing weekday entry, service without a usable
    resource) come back as an empty day with a ``reason`` instead of an error.
    """

    catalog = ServiceCatalog(db, tenant_id)
    tenant = catalog.tenant()
    set_tenant_context(tenant.id)
    tz = tenant_timezone(tenant)
    current = ensure_utc(now) if now else utc_now()

    try:
        ctx = _open_context(
            db,
            catalog,
            tenant,
            service_id=service_id,
            professional_id=professional_id,
            resource_id=resource_id,
            public_only=public_only,
        )
        hours = ctx.calendar.hours_for(target_date)
    except ConfigurationError as exc:
        logger.info(
            "no availability",
            extra={"date": target_date.isoformat(), "reason": exc.detail},
        )
        return DayAvailability(date=target_date, timezone=tz, slots=[], reason=exc.detail)

    candidates = generate_slots(target_date, ctx.span, hours, tz)
    if not candidates:
        return DayAvailability(
            date=target_date,
            timezone=tz,
            slots=[],
            reason="closed" if hours is None else "window_too_short",
        )

    store = AppointmentStore(db, tenant.id)
    opening, closing = candidates[0].reserved_start, candidates[-1].reserved_end
    merged: list[AnnotatedSlot] | None = None
    for resource in ctx.resources:
        targets = ctx.targets(resource)
        existing = store.live_appointments(targets, opening, closing)
        annotated = annotate(
            candidates,
            existing,
            targets=targets,
            now=current,
            min_advance=ctx.min_advance,
        )
        if resource is not None:
            annotated = [
                replace(slot, resource_id=resource.id) if slot.available else slot
                for slot in annotated
            ]
        if merged is None:
            merged = annotated
        else:
            merged = [
                previous if previous.available else candidate
                for previous, candidate in zip(merged, annotated)
            ]

    slots = merged or []
    logger.debug(
        "computed availability",
        extra={
            "date": target_date.isoformat(),
            "candidates": len(slots),
            "available": sum(1 for slot in slots if slot.available),
        },
    )
    return DayAvailability(date=target_date, timezone=tz, slots=slots)


def _matching_slot(slots: list[Slot], start: datetime) -> Slot | None:
    return next((slot for slot in slots if slot.start == start), None)


def record_activity(
    db: Session,
    appointment: Appointment,
    *,
    action: str,
    at: datetime,
    actor: str | None = None,
    details: dict[str, Any] | None = None,
) -> AppointmentActivity:
    """Append an audit entry for ``appointment``."""

    entry = AppointmentActivity(
        tenant_id=appointment.tenant_id,
        appointment_id=appointment.id,
        action=action,
        actor=actor,
        occurred_at=at,
        details=details,
    )
    db.add(entry)
    db.flush()
    return entry


def record_transition(
    db: Session, appointment: Appointment, transition: Transition
) -> AppointmentActivity:
    details = {"from": transition.source.value, "to": transition.target.value}
    details.update(transition.details)
    return record_activity(
        db,
        appointment,
        action=transition.action,
        at=transition.at,
        actor=transition.actor,
        details=details,
    )


def _book_occurrence(
    db: Session,
    ctx: BookingContext,
    store: AppointmentStore,
    request: BookingRequest,
    start: datetime,
    *,
    now: datetime,
    group_id: UUID | None = None,
) -> Appointment:
    start_local = localize(start, ctx.tz)
    if ensure_utc(start_local) < now:
        raise ValidationError("Cannot book a start time in the past", start=start_local)
    if ensure_utc(start_local) < now + ctx.min_advance:
        raise ValidationError(
            "Start time is inside the minimum notice window", start=start_local
        )

    target_date = start_local.date()
    hours = ctx.calendar.hours_for(target_date)
    slot = _matching_slot(generate_slots(target_date, ctx.span, hours, ctx.tz), start_local)
    if slot is None:
        if hours is None:
            raise ConfigurationError("No availability on this date", date=target_date)
        raise ValidationError("Requested start is not an offered slot", start=start_local)

    last_conflict: ConflictError | None = None
    for resource in ctx.resources:
        appointment = Appointment(
            id=uuid.uuid4(),
            tenant_id=ctx.tenant.id,
            service_id=ctx.service.id,
            professional_id=ctx.professional.id if ctx.professional else None,
            resource_id=resource.id if resource else None,
            client_id=request.client_id,
            recurrence_group_id=group_id,
            start_time=ensure_utc(slot.start),
            end_time=ensure_utc(slot.booked_end),
            reserved_start=ensure_utc(slot.reserved_start),
            reserved_end=ensure_utc(slot.reserved_end),
            status=INITIAL_STATUS,
            created_by=request.created_by,
            notes=request.notes,
        )
        try:
            store.insert(appointment)
        except ConflictError as exc:
            last_conflict = exc
            continue
        record_activity(
            db,
            appointment,
            action="created",
            at=now,
            actor=request.actor,
            details={
                "created_by": request.created_by.value,
                "recurrence_group_id": str(group_id) if group_id else None,
            },
        )
        return appointment

    if last_conflict is None:
        raise ConfigurationError(
            "No resource can host this service", service_id=ctx.service.id
        )
    raise last_conflict


def book_appointment(
    db: Session,
    *,
    tenant_id: UUID,
    request: BookingRequest,
    now: datetime | None = None,
) -> Appointment:
    """Book a single appointment or raise a :class:`SchedulingError`."""

    catalog = ServiceCatalog(db, tenant_id)
    tenant = catalog.tenant()
    set_tenant_context(tenant.id)
    if request.client_id:
        catalog.client(request.client_id)

    ctx = _open_context(
        db,
        catalog,
        tenant,
        service_id=request.service_id,
        professional_id=request.professional_id,
        resource_id=request.resource_id,
        public_only=request.public_only,
    )
    current = ensure_utc(now) if now else utc_now()
    appointment = _book_occurrence(
        db, ctx, AppointmentStore(db, tenant.id), request, request.start, now=current
    )
    logger.info(
        "appointment booked",
        extra={
            "appointment_id": str(appointment.id),
            "start": appointment.start_time.isoformat(),
        },
    )
    return appointment


def book_recurring(
    db: Session,
    *,
    tenant_id: UUID,
    request: BookingRequest,
    config: RecurrenceConfig,
    policy: RecurrencePolicy | None = None,
    now: datetime | None = None,
) -> RecurrenceOutcome:
    """Book every occurrence of a recurring request independently.

    Under ``BEST_EFFORT`` the outcome lists which occurrences failed. Under
    ``ALL_OR_NOTHING`` any failure rolls back the booked occurrences and
    raises :class:`PartialRecurrenceFailure` carrying the outcome.
    """

    policy = policy or RecurrencePolicy(settings.recurrence_policy)
    catalog = ServiceCatalog(db, tenant_id)
    tenant = catalog.tenant()
    set_tenant_context(tenant.id)
    if request.client_id:
        catalog.client(request.client_id)

    ctx = _open_context(
        db,
        catalog,
        tenant,
        service_id=request.service_id,
        professional_id=request.professional_id,
        resource_id=request.resource_id,
        public_only=request.public_only,
    )
    current = ensure_utc(now) if now else utc_now()
    store = AppointmentStore(db, tenant.id)
    start_local = localize(request.start, ctx.tz)

    outcome = RecurrenceOutcome(
        group_id=uuid.uuid4(),
        policy=policy,
        end_date=config.end_date(start_local).date(),
    )

    batch = db.begin_nested()
    for index, occurrence in enumerate(expand(start_local, config)):
        result = OccurrenceResult(index=index, start=occurrence)
        try:
            result.appointment = _book_occurrence(
                db,
                ctx,
                store,
                request,
                occurrence,
                now=current,
                group_id=outcome.group_id,
            )
        except (ConflictError, ValidationError, ConfigurationError) as exc:
            result.error = exc
            logger.info(
                "recurrence occurrence rejected",
                extra={
                    "index": index,
                    "start": occurrence.isoformat(),
                    "code": exc.code,
                },
            )
        outcome.occurrences.append(result)

    if outcome.failed and policy is RecurrencePolicy.ALL_OR_NOTHING:
        batch.rollback()
        for result in outcome.occurrences:
            if result.appointment is not None:
                result.appointment = None
                result.rolled_back = True
        logger.warning(
            "recurring booking rolled back",
            extra={
                "group_id": str(outcome.group_id),
                "failed": len(outcome.failed),
            },
        )
        raise PartialRecurrenceFailure(
            "Some occurrences could not be booked; none were kept", outcome
        )

    batch.commit()
    logger.info(
        "recurring booking processed",
        extra={
            "group_id": str(outcome.group_id),
            "booked": len(outcome.booked),
            "failed": len(outcome.failed),
        },
    )
    return outcome


def get_appointment(
    db: Session,
    *,
    tenant_id: UUID,
    appointment_id: UUID,
    lock: bool = False,
) -> Appointment:
    stmt = select(Appointment).where(
        Appointment.id == appointment_id, Appointment.tenant_id == tenant_id
    )
    if lock:
        stmt = stmt.with_for_update()
    appointment = db.execute(stmt).scalars().first()
    if appointment is None:
        raise NotFoundError("Appointment not found", id=appointment_id)
    return appointment


def transition_appointment(
    db: Session,
    *,
    tenant_id: UUID,
    appointment_id: UUID,
    action: AppointmentAction,
    actor: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Apply a lifecycle action and log it to the activity trail."""

    set_tenant_context(tenant_id)
    current = ensure_utc(now) if now else utc_now()
    appointment = get_appointment(
        db, tenant_id=tenant_id, appointment_id=appointment_id, lock=True
    )
    machine = BookingStateMachine(appointment)

    if action is AppointmentAction.CONFIRM:
        if current >= ensure_utc(appointment.start_time):
            raise ValidationError(
                "Appointment already started and can no longer be confirmed",
                appointment_id=appointment.id,
            )
        transition = machine.confirm(at=current, actor=actor)
    elif action is AppointmentAction.COMPLETE:
        schedule_settings = ServiceCatalog(db, tenant_id).settings()
        if (
            schedule_settings is not None
            and schedule_settings.require_confirmation
            and appointment.status is AppointmentStatus.SCHEDULED
        ):
            raise TransitionError(
                "Tenant requires confirmation before completing an appointment",
                appointment_id=appointment.id,
            )
        transition = machine.complete(at=current, actor=actor)
    elif action is AppointmentAction.CANCEL:
        transition = machine.cancel(at=current, actor=actor, reason=reason)
    else:
        transition = machine.mark_no_show(at=current, actor=actor)

    db.flush()
    record_transition(db, appointment, transition)
    logger.info(
        "appointment transitioned",
        extra={
            "appointment_id": str(appointment.id),
            "from_status": transition.source.value,
            "to_status": transition.target.value,
        },
    )
    return appointment


def list_appointments(
    db: Session,
    *,
    tenant_id: UUID,
    target_date: date | None = None,
) -> tuple[list[Appointment], ZoneInfo]:
    tenant = ServiceCatalog(db, tenant_id).tenant()
    set_tenant_context(tenant.id)
    tz = tenant_timezone(tenant)

    stmt = select(Appointment).where(Appointment.tenant_id == tenant.id)
    if target_date is not None:
        day_start, day_end = _day_bounds(target_date, tz)
        stmt = stmt.where(
            Appointment.start_time >= day_start, Appointment.start_time < day_end
        )
    appointments = db.execute(stmt.order_by(Appointment.start_time)).scalars().all()
    return list(appointments), tz


def appointment_activity(
    db: Session, *, tenant_id: UUID, appointment_id: UUID
) -> list[AppointmentActivity]:
    appointment = get_appointment(db, tenant_id=tenant_id, appointment_id=appointment_id)
    stmt = (
        select(AppointmentActivity)
        .where(
            AppointmentActivity.tenant_id == tenant_id,
            AppointmentActivity.appointment_id == appointment.id,
        )
        .order_by(AppointmentActivity.occurred_at, AppointmentActivity.created_at)
    )
    return list(db.execute(stmt).scalars())


def _isoformat(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value else None


def serialize_appointment(
    appointment: Appointment,
    *,
    tz: ZoneInfo,
) -> dict[str, Any]:
    """Return a JSON-friendly representation of an appointment."""

    start_local = ensure_utc(appointment.start_time).astimezone(tz)
    end_local = ensure_utc(appointment.end_time).astimezone(tz)
    return {
        "id": str(appointment.id),
        "status": appointment.status.value,
        "created_by": appointment.created_by.value,
        "start_time": _isoformat(appointment.start_time),
        "end_time": _isoformat(appointment.end_time),
        "start_local": start_local.isoformat(),
        "end_local": end_local.isoformat(),
        "service_id": str(appointment.service_id),
        "professional_id": str(appointment.professional_id)
        if appointment.professional_id
        else None,
        "resource_id": str(appointment.resource_id) if appointment.resource_id else None,
        "client_id": str(appointment.client_id) if appointment.client_id else None,
        "recurrence_group_id": str(appointment.recurrence_group_id)
        if appointment.recurrence_group_id
        else None,
        "notes": appointment.notes,
        "confirmed_at": _isoformat(appointment.confirmed_at),
        "cancelled_at": _isoformat(appointment.cancelled_at),
        "cancel_reason": appointment.cancel_reason,
        "completed_at": _isoformat(appointment.completed_at),
        "no_show_at": _isoformat(appointment.no_show_at),
    }


def serialize_outcome(outcome: RecurrenceOutcome, *, tz: ZoneInfo) -> dict[str, Any]:
    return {
        "group_id": str(outcome.group_id),
        "policy": outcome.policy.value,
        "end_date": outcome.end_date.isoformat(),
        "partial": outcome.partial,
        "booked": len(outcome.booked),
        "failed": len(outcome.failed),
        "occurrences": [
            {
                "index": item.index,
                "start_local": localize(item.start, tz).isoformat(),
                "status": item.status,
                "appointment": serialize_appointment(item.appointment, tz=tz)
                if item.appointment is not None
                else None,
                "error": item.error.as_dict() if item.error else None,
            }
            for item in outcome.occurrences
        ],
    }
