"""Persistence boundary for appointments with atomic insert-if-free semantics."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agenda.core.errors import ConflictError
from agenda.models import LIVE_STATUSES, Appointment, Professional, Resource, Tenant
from agenda.services.clock import ensure_utc
from agenda.services.conflicts import (
    AssignmentTarget,
    TargetKind,
    find_conflicts,
    reserved_span,
    targets_of,
)

logger = logging.getLogger(__name__)


def _target_clause(target: AssignmentTarget):
    if target.kind is TargetKind.PROFESSIONAL:
        return Appointment.professional_id == target.id
    if target.kind is TargetKind.RESOURCE:
        return Appointment.resource_id == target.id
    return and_(Appointment.professional_id.is_(None), Appointment.resource_id.is_(None))


class AppointmentStore:
    """Tenant-scoped appointment reads and conflict-safe inserts."""

    def __init__(self, db: Session, tenant_id: UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def live_appointments(
        self,
        targets: Iterable[AssignmentTarget],
        window_start: datetime,
        window_end: datetime,
    ) -> list[Appointment]:
        """Live appointments of this tenant whose reserved span touches the window."""

        clauses = [_target_clause(target) for target in targets]
        if not clauses:
            return []
        stmt = (
            select(Appointment)
            .where(
                Appointment.tenant_id == self.tenant_id,
                Appointment.status.in_(LIVE_STATUSES),
                Appointment.reserved_start < ensure_utc(window_end),
                Appointment.reserved_end > ensure_utc(window_start),
                or_(*clauses),
            )
            .order_by(Appointment.start_time)
        )
        return list(self.db.execute(stmt).scalars())

    def lock_statements(self, targets: Iterable[AssignmentTarget]) -> list[Select]:
        """``SELECT ... FOR UPDATE`` per target, in a stable order.

        Unassigned bookings have no row of their own, so they lock the tenant.
        """

        statements = []
        for target in sorted(targets, key=lambda item: (item.kind.value, str(item.id))):
            if target.kind is TargetKind.PROFESSIONAL:
                stmt = select(Professional.id).where(
                    Professional.id == target.id, Professional.tenant_id == self.tenant_id
                )
            elif target.kind is TargetKind.RESOURCE:
                stmt = select(Resource.id).where(
                    Resource.id == target.id, Resource.tenant_id == self.tenant_id
                )
            else:
                stmt = select(Tenant.id).where(Tenant.id == self.tenant_id)
            statements.append(stmt.with_for_update())
        return statements

    def lock_targets(self, targets: Iterable[AssignmentTarget]) -> None:
        """Row-lock what the targets stand for so concurrent writers serialize."""

        for stmt in self.lock_statements(targets):
            self.db.execute(stmt)

    def insert(self, appointment: Appointment) -> Appointment:
        """Insert ``appointment`` unless a live row's reserved span overlaps its own.

        The conflict check runs again inside the writing transaction, and the
        partial unique indexes reject a concurrent writer that slipped past it.
        """

        if appointment.tenant_id != self.tenant_id:
            raise ValueError("Appointment belongs to another tenant")

        targets = targets_of(appointment)
        start, end = reserved_span(appointment)
        requested = ensure_utc(appointment.start_time).isoformat()

        self.lock_targets(targets)
        existing = self.live_appointments(targets, start, end)
        blocking = find_conflicts(start, end, existing, targets)
        if blocking:
            raise ConflictError(
                "Requested slot overlaps an existing appointment",
                start=requested,
                conflicting_id=blocking[0].id,
            )

        try:
            with self.db.begin_nested():
                self.db.add(appointment)
        except IntegrityError as exc:
            logger.info(
                "concurrent booking rejected by constraint", extra={"start": requested}
            )
            raise ConflictError("Requested slot was booked concurrently", start=requested) from exc
        return appointment
