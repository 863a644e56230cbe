"""Tenant business calendar: which hours are open on a given date."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, time
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from agenda.core.errors import ConfigurationError, ValidationError
from agenda.models import BusinessHoursEntry, Holiday, ProfessionalHours, ScheduleSettings

SATURDAY = 5
SUNDAY = 6


@dataclass(frozen=True)
class DayHours:
    """Opening window for one day, in tenant-local wall time."""

    start: time
    end: time
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.enabled and self.start >= self.end:
            raise ValidationError(
                "Business hours must start before they end",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @property
    def minutes(self) -> int:
        return (self.end.hour * 60 + self.end.minute) - (
            self.start.hour * 60 + self.start.minute
        )

    def narrow(self, other: "DayHours") -> "DayHours | None":
        """Intersection of two open windows, ``None`` when they do not meet."""

        if not other.enabled:
            return None
        start, end = max(self.start, other.start), min(self.end, other.end)
        if start >= end:
            return None
        return DayHours(start=start, end=end)


@dataclass(frozen=True)
class BusinessCalendar:
    """Immutable weekly template plus weekend overrides and holidays.

    ``weekly`` is keyed by ``date.weekday()`` (Monday = 0). ``weekend_overrides``
    only holds Saturday/Sunday entries the tenant configured explicitly.
    ``professional_weekly`` holds the chosen professional's own windows; a
    weekday without one keeps the business hours.
    """

    weekly: Mapping[int, DayHours]
    weekend_overrides: Mapping[int, DayHours] = field(default_factory=dict)
    block_holidays: bool = False
    holidays: frozenset[date] = frozenset()
    recurring_holidays: frozenset[tuple[int, int]] = frozenset()
    professional_weekly: Mapping[int, DayHours] = field(default_factory=dict)

    def is_holiday(self, target_date: date) -> bool:
        if target_date in self.holidays:
            return True
        return (target_date.month, target_date.day) in self.recurring_holidays

    def business_hours_for(self, target_date: date) -> DayHours | None:
        if self.block_holidays and self.is_holiday(target_date):
            return None

        weekday = target_date.weekday()
        override = self.weekend_overrides.get(weekday)
        if override is not None:
            return override if override.enabled else None

        entry = self.weekly.get(weekday)
        if entry is None:
            raise ConfigurationError(
                "No business hours configured for weekday",
                weekday=weekday,
                date=target_date.isoformat(),
            )
        return entry if entry.enabled else None

    def hours_for(self, target_date: date) -> DayHours | None:
        """Return the open window for ``target_date`` or ``None`` when closed."""

        hours = self.business_hours_for(target_date)
        if hours is None:
            return None
        own = self.professional_weekly.get(target_date.weekday())
        return hours if own is None else hours.narrow(own)


def _override(enabled: bool | None, start: time | None, end: time | None) -> DayHours | None:
    if enabled is None:
        return None
    if not enabled:
        return DayHours(start=start or time.min, end=end or time.max, enabled=False)
    if start is None or end is None:
        raise ValidationError("Enabled weekend override needs start and end times")
    return DayHours(start=start, end=end)


def build_calendar(
    entries: Iterable[BusinessHoursEntry],
    settings: ScheduleSettings | None = None,
    holidays: Iterable[Holiday] = (),
    professional_hours: Iterable[ProfessionalHours] = (),
) -> BusinessCalendar:
    """Assemble a calendar value from the tenant's persisted configuration."""

    weekly = {
        entry.weekday: DayHours(
            start=entry.start_time, end=entry.end_time, enabled=entry.enabled
        )
        for entry in entries
    }
    professional_weekly = {
        entry.weekday: DayHours(
            start=entry.start_time, end=entry.end_time, enabled=entry.enabled
        )
        for entry in professional_hours
    }

    overrides: dict[int, DayHours] = {}
    block_holidays = False
    if settings is not None:
        block_holidays = settings.block_holidays
        saturday = _override(
            settings.saturday_enabled, settings.saturday_start, settings.saturday_end
        )
        sunday = _override(
            settings.sunday_enabled, settings.sunday_start, settings.sunday_end
        )
        if saturday is not None:
            overrides[SATURDAY] = saturday
        if sunday is not None:
            overrides[SUNDAY] = sunday

    fixed: set[date] = set()
    recurring: set[tuple[int, int]] = set()
    for holiday in holidays:
        if holiday.is_recurring:
            recurring.add((holiday.date.month, holiday.date.day))
        else:
            fixed.add(holiday.date)

    return BusinessCalendar(
        weekly=weekly,
        weekend_overrides=overrides,
        block_holidays=block_holidays,
        holidays=frozenset(fixed),
        recurring_holidays=frozenset(recurring),
        professional_weekly=professional_weekly,
    )


def load_calendar(
    db: Session, tenant_id: UUID, *, professional_id: UUID | None = None
) -> BusinessCalendar:
    """Read the tenant's hours, settings and holidays into a calendar value.

    With ``professional_id`` the professional's own weekly windows are loaded too.
    """

    entries = db.execute(
        select(BusinessHoursEntry).where(BusinessHoursEntry.tenant_id == tenant_id)
    ).scalars().all()
    settings = db.execute(
        select(ScheduleSettings).where(ScheduleSettings.tenant_id == tenant_id)
    ).scalar_one_or_none()

    holidays: list[Holiday] = []
    if settings is not None and settings.block_holidays:
        holidays = list(
            db.execute(
                select(Holiday).where(
                    or_(Holiday.tenant_id == tenant_id, Holiday.tenant_id.is_(None))
                )
            ).scalars()
        )

    professional_hours: list[ProfessionalHours] = []
    if professional_id is not None:
        professional_hours = list(
            db.execute(
                select(ProfessionalHours).where(
                    ProfessionalHours.tenant_id == tenant_id,
                    ProfessionalHours.professional_id == professional_id,
                )
            ).scalars()
        )

    return build_calendar(entries, settings, holidays, professional_hours)
