"""Error taxonomy shared by the scheduling engine and the HTTP layer."""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base class for every recoverable scheduling failure."""

    code = "scheduling_error"
    status_code = 400

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "detail": self.detail}
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


class ConfigurationError(SchedulingError):
    """Tenant configuration cannot produce availability (surfaced as no availability)."""

    code = "configuration_error"
    status_code = 422


class ConflictError(SchedulingError):
    """Requested span overlaps a live appointment for the same professional/resource."""

    code = "slot_taken"
    status_code = 409


class ValidationError(SchedulingError):
    """Malformed input rejected before any computation."""

    code = "validation_error"
    status_code = 400


class TransitionError(SchedulingError):
    """Illegal appointment lifecycle transition."""

    code = "invalid_transition"
    status_code = 409


class NotFoundError(SchedulingError):
    """Entity does not exist inside the requesting tenant."""

    code = "not_found"
    status_code = 404


class PartialRecurrenceFailure(SchedulingError):
    """Some occurrences of a recurring request could not be booked."""

    code = "partial_recurrence_failure"
    status_code = 409

    def __init__(self, detail: str, outcome: Any) -> None:
        super().__init__(detail)
        self.outcome = outcome


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "NotFoundError",
    "PartialRecurrenceFailure",
    "SchedulingError",
    "TransitionError",
    "ValidationError",
]
