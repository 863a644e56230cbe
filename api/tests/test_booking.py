from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from agenda.core.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PartialRecurrenceFailure,
    TransitionError,
    ValidationError,
)
from agenda.models import Appointment, AppointmentStatus, ProfessionalHours, ScheduleSettings
from agenda.services.conflicts import AssignmentTarget
from agenda.services.recurrence import RecurrenceConfig, RecurrenceFrequency, RecurrencePolicy
from agenda.services.scheduling import (
    AppointmentAction,
    BookingRequest,
    appointment_activity,
    book_appointment,
    book_recurring,
    day_availability,
    transition_appointment,
)
from agenda.services.store import AppointmentStore
from conftest import NOW, add_resources, make_clinic

MONDAY = date(2030, 1, 7)
TEN_AM = datetime(2030, 1, 7, 10, 0)


def request_for(clinic, start=TEN_AM, **overrides):
    fields = {
        "service_id": clinic.service.id,
        "start": start,
        "professional_id": clinic.professional.id,
        "client_id": clinic.client.id,
    }
    fields.update(overrides)
    return BookingRequest(**fields)


def book(db, clinic, start=TEN_AM, **overrides):
    return book_appointment(
        db, tenant_id=clinic.tenant.id, request=request_for(clinic, start, **overrides), now=NOW
    )


def count_appointments(db, **criteria):
    stmt = select(func.count()).select_from(Appointment).filter_by(**criteria)
    return db.execute(stmt).scalar_one()


def test_books_offered_slot(db, clinic):
    appointment = book(db, clinic)
    db.commit()

    assert appointment.status is AppointmentStatus.SCHEDULED
    # 10:00 in Sao Paulo is 13:00 UTC; the stored span excludes buffers.
    assert appointment.start_time == datetime(2030, 1, 7, 13, 0, tzinfo=timezone.utc)
    assert appointment.end_time - appointment.start_time == timedelta(minutes=30)
    entries = appointment_activity(db, tenant_id=clinic.tenant.id, appointment_id=appointment.id)
    assert [entry.action for entry in entries] == ["created"]


def test_second_booking_of_same_slot_conflicts(db, clinic):
    book(db, clinic)
    db.commit()

    with pytest.raises(ConflictError):
        book(db, clinic)


def test_overlapping_start_is_not_an_offered_slot(db, clinic):
    with pytest.raises(ValidationError):
        book(db, clinic, start=datetime(2030, 1, 7, 10, 10))


def test_past_start_is_rejected(db, clinic):
    with pytest.raises(ValidationError):
        book(db, clinic, start=datetime(2029, 12, 31, 10, 0))


def test_min_advance_window_is_rejected(db, clinic):
    settings = db.execute(
        select(ScheduleSettings).filter_by(tenant_id=clinic.tenant.id)
    ).scalar_one()
    settings.min_advance_minutes = 60
    db.commit()
    # 09:30 local is 12:30 UTC, only thirty minutes after NOW.
    now = datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc)

    with pytest.raises(ValidationError):
        book_appointment(
            db,
            tenant_id=clinic.tenant.id,
            request=request_for(clinic, datetime(2030, 1, 7, 9, 30)),
            now=now,
        )


def test_closed_day_is_configuration_error(db, clinic):
    with pytest.raises(ConfigurationError):
        book(db, clinic, start=datetime(2030, 1, 5, 10, 0))


def test_concurrent_clients_only_one_wins(session_factory, clinic):
    for _ in range(2):
        session = session_factory()
        day = day_availability(
            session,
            tenant_id=clinic.tenant.id,
            service_id=clinic.service.id,
            target_date=MONDAY,
            professional_id=clinic.professional.id,
            now=NOW,
        )
        assert next(slot for slot in day.slots if slot.start.hour == 10).available
        session.close()

    first, second = session_factory(), session_factory()
    book(first, clinic)
    first.commit()
    with pytest.raises(ConflictError):
        book(second, clinic)
    second.rollback()

    assert count_appointments(first, tenant_id=clinic.tenant.id) == 1
    first.close()
    second.close()


def test_unique_index_rejects_writer_that_skipped_the_check(
    session_factory, clinic, monkeypatch
):
    first = session_factory()
    book(first, clinic)
    first.commit()
    first.close()

    monkeypatch.setattr("agenda.services.store.find_conflicts", lambda *args, **kwargs: [])
    second = session_factory()
    with pytest.raises(ConflictError, match="concurrently"):
        book(second, clinic)
    second.rollback()
    assert count_appointments(second, tenant_id=clinic.tenant.id) == 1
    second.close()


def test_tenants_are_isolated(db, clinic):
    other = make_clinic(db, "Outra Clínica")
    book(db, clinic)
    db.commit()

    with pytest.raises(NotFoundError):
        book(db, other, service_id=clinic.service.id, professional_id=other.professional.id)

    day = day_availability(
        db,
        tenant_id=other.tenant.id,
        service_id=other.service.id,
        target_date=MONDAY,
        now=NOW,
    )
    assert all(slot.available for slot in day.slots)


def test_professional_must_be_linked_to_service(db, clinic):
    other = make_clinic(db, "Outra Clínica")

    with pytest.raises(NotFoundError):
        book(db, clinic, professional_id=other.professional.id)


def test_availability_for_a_full_day(db, clinic):
    book(db, clinic)
    db.commit()

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        professional_id=clinic.professional.id,
        now=NOW,
    )

    assert len(day.slots) == 16
    blocked = [slot for slot in day.slots if not slot.available]
    assert [(slot.start.hour, slot.start.minute, slot.reason) for slot in blocked] == [
        (10, 0, "conflict")
    ]


def test_availability_on_closed_day_explains_why(db, clinic):
    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=date(2030, 1, 6),
        now=NOW,
    )

    assert day.slots == []
    assert day.reason == "closed"


def test_resource_is_assigned_automatically(db, clinic):
    room_a, room_b = add_resources(db, clinic, "Sala A", "Sala B")

    first = book(db, clinic, professional_id=None)
    second = book(db, clinic, professional_id=None)
    db.commit()

    assert (first.resource_id, second.resource_id) == (room_a.id, room_b.id)
    with pytest.raises(ConflictError):
        book(db, clinic, professional_id=None)


def test_availability_reports_the_free_resource(db, clinic):
    room_a, room_b = add_resources(db, clinic, "Sala A", "Sala B")
    book(db, clinic, professional_id=None)
    db.commit()

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        now=NOW,
    )

    ten = next(slot for slot in day.slots if slot.start.hour == 10 and slot.start.minute == 0)
    assert ten.available
    assert ten.resource_id == room_b.id


def test_service_requiring_missing_resource(db, clinic):
    clinic.service.requires_resource = True
    db.commit()

    with pytest.raises(ConfigurationError):
        book(db, clinic)

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        now=NOW,
    )
    assert day.slots == []
    assert "resource" in day.reason


def weekly(count=4):
    return RecurrenceConfig(RecurrenceFrequency.WEEKLY, count)


def test_recurring_best_effort_keeps_free_dates(db, clinic):
    book(db, clinic, start=datetime(2030, 1, 14, 10, 0))
    db.commit()

    outcome = book_recurring(
        db,
        tenant_id=clinic.tenant.id,
        request=request_for(clinic),
        config=weekly(),
        policy=RecurrencePolicy.BEST_EFFORT,
        now=NOW,
    )
    db.commit()

    assert [item.status for item in outcome.occurrences] == [
        "booked",
        "failed",
        "booked",
        "booked",
    ]
    assert isinstance(outcome.occurrences[1].error, ConflictError)
    assert outcome.partial
    assert outcome.end_date == date(2030, 1, 28)
    assert count_appointments(db, recurrence_group_id=outcome.group_id) == 3


def test_recurring_all_or_nothing_rolls_back(db, clinic):
    book(db, clinic, start=datetime(2030, 1, 21, 10, 0))
    db.commit()

    with pytest.raises(PartialRecurrenceFailure) as excinfo:
        book_recurring(
            db,
            tenant_id=clinic.tenant.id,
            request=request_for(clinic),
            config=weekly(),
            policy=RecurrencePolicy.ALL_OR_NOTHING,
            now=NOW,
        )
    db.commit()

    outcome = excinfo.value.outcome
    assert [item.status for item in outcome.occurrences] == [
        "rolled_back",
        "rolled_back",
        "failed",
        "rolled_back",
    ]
    assert count_appointments(db, recurrence_group_id=outcome.group_id) == 0
    assert count_appointments(db, tenant_id=clinic.tenant.id) == 1


def test_recurring_without_conflicts_books_everything(db, clinic):
    outcome = book_recurring(
        db,
        tenant_id=clinic.tenant.id,
        request=request_for(clinic),
        config=weekly(3),
        now=NOW,
    )

    assert len(outcome.booked) == 3
    assert not outcome.failed
    assert not outcome.partial


def test_cancel_frees_the_slot(db, clinic):
    appointment = book(db, clinic)
    db.commit()

    transition_appointment(
        db,
        tenant_id=clinic.tenant.id,
        appointment_id=appointment.id,
        action=AppointmentAction.CANCEL,
        actor="recepcao",
        reason="cliente pediu",
        now=NOW,
    )
    db.commit()

    rebooked = book(db, clinic)
    assert rebooked.id != appointment.id
    entries = appointment_activity(db, tenant_id=clinic.tenant.id, appointment_id=appointment.id)
    assert [entry.action for entry in entries] == ["created", "cancelled"]
    assert entries[1].details == {"from": "SCHEDULED", "to": "CANCELLED", "reason": "cliente pediu"}


def test_confirm_after_start_is_rejected(db, clinic):
    appointment = book(db, clinic)
    db.commit()
    after_start = datetime(2030, 1, 7, 13, 5, tzinfo=timezone.utc)

    with pytest.raises(ValidationError):
        transition_appointment(
            db,
            tenant_id=clinic.tenant.id,
            appointment_id=appointment.id,
            action=AppointmentAction.CONFIRM,
            now=after_start,
        )

    transition_appointment(
        db,
        tenant_id=clinic.tenant.id,
        appointment_id=appointment.id,
        action=AppointmentAction.NO_SHOW,
        now=after_start,
    )
    assert appointment.status is AppointmentStatus.NO_SHOW


def test_transition_is_tenant_scoped(db, clinic):
    other = make_clinic(db, "Outra Clínica")
    appointment = book(db, clinic)
    db.commit()

    with pytest.raises(NotFoundError):
        transition_appointment(
            db,
            tenant_id=other.tenant.id,
            appointment_id=appointment.id,
            action=AppointmentAction.CANCEL,
            now=NOW,
        )


def with_buffers(db, clinic):
    clinic.service.duration_minutes = 60
    clinic.service.buffer_before_minutes = 15
    clinic.service.buffer_after_minutes = 15
    db.commit()


@pytest.mark.parametrize(
    ("first", "second"),
    [(10, 11), (11, 10)],
)
def test_buffers_reject_back_to_back_booking_in_either_order(db, clinic, first, second):
    with_buffers(db, clinic)
    booked = book(db, clinic, start=datetime(2030, 1, 7, first, 0))
    db.commit()

    assert booked.end_time - booked.start_time == timedelta(minutes=60)
    assert booked.reserved_end - booked.reserved_start == timedelta(minutes=90)
    with pytest.raises(ConflictError):
        book(db, clinic, start=datetime(2030, 1, 7, second, 0))


def test_buffered_availability_matches_booking(db, clinic):
    with_buffers(db, clinic)
    book(db, clinic)
    db.commit()

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        professional_id=clinic.professional.id,
        now=NOW,
    )

    free = [slot.start.hour for slot in day.slots if slot.available]
    assert free == [12, 13, 14, 15]
    noon = book(db, clinic, start=datetime(2030, 1, 7, 12, 0))
    assert noon.status is AppointmentStatus.SCHEDULED


def test_unassigned_bookings_collide_on_the_unique_index(
    session_factory, clinic, monkeypatch
):
    first = session_factory()
    book(first, clinic, professional_id=None)
    first.commit()
    first.close()

    monkeypatch.setattr("agenda.services.store.find_conflicts", lambda *args, **kwargs: [])
    second = session_factory()
    with pytest.raises(ConflictError, match="concurrently"):
        book(second, clinic, professional_id=None)
    second.rollback()
    assert count_appointments(second, tenant_id=clinic.tenant.id) == 1
    second.close()


def test_unassigned_writers_serialize_on_the_tenant_row(db, clinic):
    store = AppointmentStore(db, clinic.tenant.id)

    statements = store.lock_statements({AssignmentTarget.unassigned()})
    sql = str(statements[0].compile(dialect=postgresql.dialect()))

    assert len(statements) == 1
    assert "FROM tenants" in sql
    assert sql.endswith("FOR UPDATE")


def test_professional_hours_narrow_the_day(db, clinic):
    db.add(
        ProfessionalHours(
            tenant_id=clinic.tenant.id,
            professional_id=clinic.professional.id,
            weekday=MONDAY.weekday(),
            start_time=time(13, 0),
            end_time=time(15, 0),
        )
    )
    db.commit()

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        professional_id=clinic.professional.id,
        now=NOW,
    )
    without_professional = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        now=NOW,
    )

    assert [slot.start.strftime("%H:%M") for slot in day.slots] == [
        "13:00",
        "13:30",
        "14:00",
        "14:30",
    ]
    assert len(without_professional.slots) == 16
    with pytest.raises(ValidationError):
        book(db, clinic)
    afternoon = book(db, clinic, start=datetime(2030, 1, 7, 13, 0))
    assert afternoon.professional_id == clinic.professional.id


def test_professional_day_off_closes_the_day(db, clinic):
    db.add(
        ProfessionalHours(
            tenant_id=clinic.tenant.id,
            professional_id=clinic.professional.id,
            weekday=MONDAY.weekday(),
            enabled=False,
            start_time=time(9, 0),
            end_time=time(17, 0),
        )
    )
    db.commit()

    day = day_availability(
        db,
        tenant_id=clinic.tenant.id,
        service_id=clinic.service.id,
        target_date=MONDAY,
        professional_id=clinic.professional.id,
        now=NOW,
    )

    assert day.slots == []
    assert day.reason == "closed"


def test_completion_waits_for_confirmation_when_required(db, clinic):
    settings = db.execute(
        select(ScheduleSettings).filter_by(tenant_id=clinic.tenant.id)
    ).scalar_one()
    settings.require_confirmation = True
    appointment = book(db, clinic)
    db.commit()
    after_start = datetime(2030, 1, 7, 14, 0, tzinfo=timezone.utc)

    with pytest.raises(TransitionError):
        transition_appointment(
            db,
            tenant_id=clinic.tenant.id,
            appointment_id=appointment.id,
            action=AppointmentAction.COMPLETE,
            now=after_start,
        )

    transition_appointment(
        db,
        tenant_id=clinic.tenant.id,
        appointment_id=appointment.id,
        action=AppointmentAction.CONFIRM,
        now=NOW,
    )
    transition_appointment(
        db,
        tenant_id=clinic.tenant.id,
        appointment_id=appointment.id,
        action=AppointmentAction.COMPLETE,
        now=after_start,
    )
    assert appointment.status is AppointmentStatus.COMPLETED
