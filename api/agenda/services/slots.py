"""Candidate slot generation for a single day."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from agenda.core.errors import ValidationError
from agenda.services.calendar import DayHours


@dataclass(frozen=True)
class ServiceSpan:
    """Time footprint of a service: core duration plus buffers, in minutes."""

    duration: int
    buffer_before: int = 0
    buffer_after: int = 0

    def __post_init__(self) -> None:
        if self.duration <= 0:
            raise ValidationError("Service duration must be positive", duration=self.duration)
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise ValidationError("Service buffers cannot be negative")

    @classmethod
    def of(cls, service) -> "ServiceSpan":
        return cls(
            duration=service.duration_minutes,
            buffer_before=service.buffer_before_minutes or 0,
            buffer_after=service.buffer_after_minutes or 0,
        )

    @property
    def total(self) -> int:
        return self.duration + self.buffer_before + self.buffer_after


@dataclass(frozen=True)
class Slot:
    """Candidate interval.

    ``end`` closes the window-fitting span (``start`` plus duration and both
    buffers) and ``booked_end`` the stored one. ``reserved_start`` and
    ``reserved_end`` are the stored span widened by the buffers on each side,
    which is what conflict checks compare.
    """

    start: datetime
    end: datetime
    booked_end: datetime
    reserved_start: datetime
    reserved_end: datetime


def window_bounds(
    target_date: date, hours: DayHours, tz: ZoneInfo
) -> tuple[datetime, datetime]:
    """Return the day's opening and closing instants in UTC."""

    opening = datetime.combine(target_date, hours.start, tzinfo=tz)
    closing = datetime.combine(target_date, hours.end, tzinfo=tz)
    return opening.astimezone(timezone.utc), closing.astimezone(timezone.utc)


def generate_slots(
    target_date: date,
    span: ServiceSpan,
    hours: DayHours | None,
    tz: ZoneInfo,
) -> list[Slot]:
    """Return the ordered candidate starts for ``target_date``.

    The cursor advances by the service duration while the buffered span must
    fit before closing; a span ending exactly at closing is kept. Arithmetic
    runs on UTC instants so days with a DST shift keep their real length.
    """

    if hours is None or not hours.enabled:
        return []

    opening, closing = window_bounds(target_date, hours, tz)
    step = timedelta(minutes=span.duration)
    total = timedelta(minutes=span.total)
    before = timedelta(minutes=span.buffer_before)
    after = timedelta(minutes=span.buffer_after)

    slots: list[Slot] = []
    cursor = opening
    while cursor + total <= closing:
        slots.append(
            Slot(
                start=cursor.astimezone(tz),
                end=(cursor + total).astimezone(tz),
                booked_end=(cursor + step).astimezone(tz),
                reserved_start=(cursor - before).astimezone(tz),
                reserved_end=(cursor + step + after).astimezone(tz),
            )
        )
        cursor += step
    return slots

