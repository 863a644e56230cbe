import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from agenda.core.errors import TransitionError
from agenda.models import AppointmentStatus
from agenda.services.state_machine import TERMINAL_STATUSES, BookingStateMachine

START = datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc)


def appointment(status=AppointmentStatus.SCHEDULED):
    return SimpleNamespace(
        id=uuid.uuid4(),
        status=status,
        start_time=START,
        end_time=START + timedelta(minutes=30),
        confirmed_at=None,
        confirmed_by=None,
        cancelled_at=None,
        cancelled_by=None,
        cancel_reason=None,
        completed_at=None,
        no_show_at=None,
    )


def test_confirm_then_complete():
    appt = appointment()
    machine = BookingStateMachine(appt)
    before = START - timedelta(hours=2)

    confirmed = machine.confirm(at=before, actor="recepcao")
    completed = machine.complete(at=START + timedelta(minutes=30))

    assert confirmed.action == "confirmed"
    assert (confirmed.source, confirmed.target) == (
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
    )
    assert appt.confirmed_at == before
    assert appt.confirmed_by == "recepcao"
    assert completed.source is AppointmentStatus.CONFIRMED
    assert appt.status is AppointmentStatus.COMPLETED


def test_scheduled_can_complete_directly():
    appt = appointment()

    BookingStateMachine(appt).complete(at=START)

    assert appt.status is AppointmentStatus.COMPLETED
    assert appt.completed_at == START


def test_cancel_records_reason_and_is_final():
    appt = appointment(AppointmentStatus.CONFIRMED)
    machine = BookingStateMachine(appt)

    transition = machine.cancel(at=START - timedelta(days=1), actor="maria", reason="viagem")

    assert transition.details == {"reason": "viagem"}
    assert appt.cancel_reason == "viagem"
    assert appt.cancelled_by == "maria"
    with pytest.raises(TransitionError):
        machine.confirm(at=START)


def test_no_show_needs_start_to_have_passed():
    appt = appointment()
    machine = BookingStateMachine(appt)

    with pytest.raises(TransitionError):
        machine.mark_no_show(at=START - timedelta(minutes=1))
    assert appt.status is AppointmentStatus.SCHEDULED

    machine.mark_no_show(at=START)
    assert appt.status is AppointmentStatus.NO_SHOW
    assert appt.no_show_at == START


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda item: item.value))
def test_terminal_states_reject_everything(status):
    machine = BookingStateMachine(appointment(status))

    for target in AppointmentStatus:
        assert not machine.can(target)
    with pytest.raises(TransitionError):
        machine.cancel(at=START)


def test_confirmed_cannot_be_confirmed_again():
    machine = BookingStateMachine(appointment(AppointmentStatus.CONFIRMED))

    with pytest.raises(TransitionError):
        machine.confirm(at=START - timedelta(hours=1))


def test_transitions_never_touch_the_span():
    appt = appointment()

    BookingStateMachine(appt).cancel(at=START)

    assert appt.start_time == START
    assert appt.end_time == START + timedelta(minutes=30)
