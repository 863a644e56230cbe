"""Availability annotation and conflict detection."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from agenda.models import LIVE_STATUSES
from agenda.services.clock import ensure_utc
from agenda.services.slots import Slot


class TargetKind(str, enum.Enum):
    PROFESSIONAL = "PROFESSIONAL"
    RESOURCE = "RESOURCE"
    UNASSIGNED = "UNASSIGNED"


@dataclass(frozen=True)
class AssignmentTarget:
    """Who or what an appointment occupies: a professional, a resource, or neither."""

    kind: TargetKind
    id: UUID | None = None

    @classmethod
    def professional(cls, professional_id: UUID) -> "AssignmentTarget":
        return cls(TargetKind.PROFESSIONAL, professional_id)

    @classmethod
    def resource(cls, resource_id: UUID) -> "AssignmentTarget":
        return cls(TargetKind.RESOURCE, resource_id)

    @classmethod
    def unassigned(cls) -> "AssignmentTarget":
        return cls(TargetKind.UNASSIGNED)


def targets_of(appointment) -> frozenset[AssignmentTarget]:
    """Targets an appointment (or anything shaped like one) holds."""

    targets: set[AssignmentTarget] = set()
    if appointment.professional_id is not None:
        targets.add(AssignmentTarget.professional(appointment.professional_id))
    if appointment.resource_id is not None:
        targets.add(AssignmentTarget.resource(appointment.resource_id))
    if not targets:
        targets.add(AssignmentTarget.unassigned())
    return frozenset(targets)


def overlaps(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    """Half-open interval overlap; equal starts always overlap."""

    return start < other_end and end > other_start


def reserved_span(appointment) -> tuple[datetime, datetime]:
    """The buffered interval an appointment holds against its targets."""

    return ensure_utc(appointment.reserved_start), ensure_utc(appointment.reserved_end)


def find_conflicts(
    start: datetime,
    end: datetime,
    existing: Iterable,
    targets: Iterable[AssignmentTarget],
    *,
    ignore_id: UUID | None = None,
) -> list:
    """Live appointments sharing a target whose reserved span overlaps ``[start, end)``.

    ``start`` and ``end`` are the candidate's own reserved span, so buffers
    count on both sides whichever booking came first.
    """

    wanted = frozenset(targets)
    blocking = []
    for appointment in existing:
        if ignore_id is not None and appointment.id == ignore_id:
            continue
        if appointment.status not in LIVE_STATUSES:
            continue
        if not wanted & targets_of(appointment):
            continue
        if overlaps(start, end, *reserved_span(appointment)):
            blocking.append(appointment)
    return blocking


@dataclass(frozen=True)
class AnnotatedSlot:
    start: datetime
    end: datetime
    booked_end: datetime
    available: bool
    reason: str | None = None
    resource_id: UUID | None = None

    def as_dict(self) -> dict[str, str | bool | None]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "booked_end": self.booked_end.isoformat(),
            "available": self.available,
            "reason": self.reason,
            "resource_id": str(self.resource_id) if self.resource_id else None,
        }


def annotate(
    candidates: Sequence[Slot],
    existing: Sequence,
    *,
    targets: Iterable[AssignmentTarget],
    now: datetime,
    min_advance: timedelta = timedelta(0),
) -> list[AnnotatedSlot]:
    """Mark each candidate available or blocked, keeping the input order."""

    wanted = frozenset(targets)
    earliest = now + min_advance
    annotated: list[AnnotatedSlot] = []
    for slot in candidates:
        reason = None
        if slot.start < earliest:
            reason = "past" if slot.start < now else "min_advance"
        elif find_conflicts(slot.reserved_start, slot.reserved_end, existing, wanted):
            reason = "conflict"
        annotated.append(
            AnnotatedSlot(
                start=slot.start,
                end=slot.end,
                booked_end=slot.booked_end,
                available=reason is None,
                reason=reason,
            )
        )
    return annotated
