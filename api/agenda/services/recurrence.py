"""Expansion of recurring booking requests into concrete occurrences."""

from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime
from typing import TypeVar

from dateutil.relativedelta import relativedelta

from agenda.core.errors import ValidationError

MIN_OCCURRENCES = 2
MAX_OCCURRENCES = 52

D = TypeVar("D", date, datetime)


class RecurrenceFrequency(str, enum.Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RecurrencePolicy(str, enum.Enum):
    """What to do when only some occurrences can be booked."""

    BEST_EFFORT = "BEST_EFFORT"
    ALL_OR_NOTHING = "ALL_OR_NOTHING"


@dataclass(frozen=True)
class RecurrenceConfig:
    frequency: RecurrenceFrequency
    count: int
    enabled: bool = True

    def __post_init__(self) -> None:
        if not MIN_OCCURRENCES <= self.count <= MAX_OCCURRENCES:
            raise ValidationError(
                f"Recurrence count must be between {MIN_OCCURRENCES} and {MAX_OCCURRENCES}",
                count=self.count,
            )

    def end_date(self, start: D) -> D:
        """Date of the final occurrence; informational only."""

        return occurrence_at(start, self.frequency, self.count - 1)


def occurrence_at(start: D, frequency: RecurrenceFrequency, index: int) -> D:
    """Occurrence ``index`` counted from the anchor ``start``.

    Monthly steps are always taken from the anchor, so a day missing from a
    shorter month clamps to that month's last day without drifting later
    occurrences (Jan 31 -> Feb 28 -> Mar 31).
    """

    if frequency is RecurrenceFrequency.WEEKLY:
        return start + relativedelta(weeks=index)
    if frequency is RecurrenceFrequency.BIWEEKLY:
        return start + relativedelta(weeks=2 * index)
    return start + relativedelta(months=index)


def iter_occurrences(start: D, config: RecurrenceConfig) -> Iterator[D]:
    for index in range(config.count):
        yield occurrence_at(start, config.frequency, index)


def expand(start: D, config: RecurrenceConfig) -> list[D]:
    """Return the ``count`` occurrences, the first being ``start`` itself."""

    if not config.enabled:
        return [start]
    return list(iter_occurrences(start, config))
