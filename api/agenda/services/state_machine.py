"""Lifecycle rules for a single appointment.

The machine only touches status fields and their timestamps. It never reads
the wall clock: every transition receives the instant it happens at, and
rescheduling is always cancel-plus-recreate, so ``service_id``,
``start_time`` and ``end_time`` stay immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from agenda.core.errors import TransitionError
from agenda.models import AppointmentStatus
from agenda.services.clock import ensure_utc

INITIAL_STATUS = AppointmentStatus.SCHEDULED

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)


@dataclass(frozen=True)
class Transition:
    """Record of an applied transition, persisted as an activity entry."""

    source: AppointmentStatus
    target: AppointmentStatus
    at: datetime
    actor: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> str:
        return self.target.value.lower()


class BookingStateMachine:
    """Apply lifecycle transitions to an appointment-like object."""

    def __init__(self, appointment) -> None:
        self.appointment = appointment

    @property
    def status(self) -> AppointmentStatus:
        return self.appointment.status

    def can(self, target: AppointmentStatus) -> bool:
        return target in TRANSITIONS[self.status]

    def _move(
        self,
        target: AppointmentStatus,
        at: datetime,
        actor: str | None,
        **details: Any,
    ) -> Transition:
        source = self.status
        if not self.can(target):
            raise TransitionError(
                f"Cannot move appointment from {source.value} to {target.value}",
                appointment_id=self.appointment.id,
            )
        self.appointment.status = target
        return Transition(
            source=source,
            target=target,
            at=at,
            actor=actor,
            details={key: value for key, value in details.items() if value is not None},
        )

    def confirm(self, *, at: datetime, actor: str | None = None) -> Transition:
        transition = self._move(AppointmentStatus.CONFIRMED, at, actor)
        self.appointment.confirmed_at = at
        self.appointment.confirmed_by = actor
        return transition

    def complete(self, *, at: datetime, actor: str | None = None) -> Transition:
        transition = self._move(AppointmentStatus.COMPLETED, at, actor)
        self.appointment.completed_at = at
        return transition

    def cancel(
        self, *, at: datetime, actor: str | None = None, reason: str | None = None
    ) -> Transition:
        transition = self._move(AppointmentStatus.CANCELLED, at, actor, reason=reason)
        self.appointment.cancelled_at = at
        self.appointment.cancelled_by = actor
        self.appointment.cancel_reason = reason
        return transition

    def mark_no_show(self, *, at: datetime, actor: str | None = None) -> Transition:
        # Guarded on the supplied instant, not on the clock.
        if ensure_utc(at) < ensure_utc(self.appointment.start_time):
            raise TransitionError(
                "No-show can only be recorded after the appointment start",
                appointment_id=self.appointment.id,
            )
        transition = self._move(AppointmentStatus.NO_SHOW, at, actor)
        self.appointment.no_show_at = at
        return transition
