"""Service layer of the Agenda API."""

from agenda.services.scheduling import (
    AppointmentAction,
    BookingRequest,
    book_appointment,
    book_recurring,
    day_availability,
    transition_appointment,
)

__all__ = [
    "AppointmentAction",
    "BookingRequest",
    "book_appointment",
    "book_recurring",
    "day_availability",
    "transition_appointment",
]
