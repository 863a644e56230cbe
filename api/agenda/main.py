from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from datetime import date, datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from agenda.core.config import settings
from agenda.core.errors import PartialRecurrenceFailure, SchedulingError
from agenda.db.session import get_db
from agenda.logging_utils import (
    configure_logging,
    reset_request_id,
    set_request_id,
    tenant_context,
)
from agenda.models import AppointmentCreator, Service
from agenda.services.catalog import ServiceCatalog
from agenda.services.clock import ensure_utc, tenant_timezone
from agenda.services.recurrence import (
    RecurrenceConfig,
    RecurrenceFrequency,
    RecurrencePolicy,
    expand,
)
from agenda.services.scheduling import (
    AppointmentAction,
    BookingRequest,
    appointment_activity,
    book_appointment,
    book_recurring,
    day_availability,
    list_appointments,
    serialize_appointment,
    serialize_outcome,
    transition_appointment,
)

configure_logging()

app = FastAPI(title=settings.app_name, version="0.1.0")

logger = logging.getLogger(__name__)

REQUEST_COUNTER = Counter(
    "agenda_api_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status", "tenant"],
)
REQUEST_LATENCY = Histogram(
    "agenda_api_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)
BOOKING_COUNTER = Counter(
    "agenda_bookings_total",
    "Booking attempts by outcome.",
    ["outcome"],
)
SLOT_QUERY_COUNTER = Counter(
    "agenda_slot_queries_total",
    "Availability queries served.",
)

_TENANT_PATH = re.compile(r"^/api/v1/tenants/(?P<tenant_id>[^/]+)")


def tenant_hint(request: Request) -> str | None:
    """Tenant named by the URL, or by the X-Tenant-ID header outside tenant routes."""

    match = _TENANT_PATH.match(request.url.path)
    if match:
        return match.group("tenant_id")
    return request.headers.get("X-Tenant-ID")


class SimpleRateLimiter:
    """In-memory rate limiter keyed by IP and tenant."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = max(1, limit)
        self.window_seconds = max(1, window_seconds)
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        async with self._lock:
            count, window_start = self._entries.get(key, (0, now))
            if now - window_start >= self.window_seconds:
                self._entries[key] = (1, now)
                return True
            if count >= self.limit:
                return False
            self._entries[key] = (count + 1, window_start)
            return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populate request and tenant context for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        request.state.request_id = request_id
        request_id_token = set_request_id(request_id)
        try:
            with tenant_context(tenant_hint(request)):
                response = await call_next(request)
        finally:
            reset_request_id(request_id_token)

        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a coarse rate limit per IP and tenant."""

    def __init__(self, app: FastAPI, limiter: SimpleRateLimiter) -> None:  # type: ignore[override]
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        tenant_value = tenant_hint(request) or "anonymous"
        rate_key = f"{client_host}:{tenant_value}"

        allowed = await self.limiter.allow(rate_key)
        if not allowed:
            logger.warning(
                "rate limit exceeded",
                extra={"client_ip": client_host, "tenant": tenant_value},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded", "code": "rate_limited"},
            )

        return await call_next(request)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs and feed metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start_time = time.perf_counter()
        path = request.scope.get("root_path", "") + request.scope.get("path", request.url.path)
        method = request.method
        tenant_label = tenant_hint(request) or "anonymous"

        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - start_time
            REQUEST_COUNTER.labels(
                method=method, path=path, status="500", tenant=tenant_label
            ).inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            logger.exception(
                "request failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
            raise

        elapsed = time.perf_counter() - start_time
        status_code = response.status_code

        REQUEST_COUNTER.labels(
            method=method,
            path=path,
            status=str(status_code),
            tenant=tenant_label,
        ).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        logger.info(
            "request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )

        return response


rate_limiter = SimpleRateLimiter(
    settings.rate_limit_requests, settings.rate_limit_window_seconds
)


app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
app.add_middleware(AccessLogMiddleware)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


class RecurrenceIn(BaseModel):
    frequency: RecurrenceFrequency
    count: int
    policy: RecurrencePolicy | None = None


class AppointmentCreate(BaseModel):
    service_id: UUID
    start: datetime
    professional_id: UUID | None = None
    resource_id: UUID | None = None
    client_id: UUID | None = None
    created_by: AppointmentCreator = AppointmentCreator.ADMIN
    notes: str | None = None
    actor: str | None = None
    recurrence: RecurrenceIn | None = None


class RecurrencePreview(BaseModel):
    start: date
    frequency: RecurrenceFrequency
    count: int


class TransitionIn(BaseModel):
    actor: str | None = None
    reason: str | None = None


def tenant_tz(db: Session, tenant_id: UUID) -> ZoneInfo:
    return tenant_timezone(ServiceCatalog(db, tenant_id).tenant())


def serialize_service(service: Service) -> dict[str, Any]:
    return {
        "id": str(service.id),
        "name": service.name,
        "description": service.description,
        "duration_minutes": service.duration_minutes,
        "buffer_before_minutes": service.buffer_before_minutes,
        "buffer_after_minutes": service.buffer_after_minutes,
        "requires_resource": service.requires_resource,
        "is_public": service.is_public,
        "professional_ids": [str(item.id) for item in service.professionals if item.is_active],
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/tenants/{tenant_id}/services")
def list_services(
    tenant_id: UUID,
    public: bool = False,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    catalog = ServiceCatalog(db, tenant_id)
    catalog.tenant()
    return {
        "tenant_id": str(tenant_id),
        "services": [serialize_service(item) for item in catalog.services(public_only=public)],
    }


@app.get("/api/v1/tenants/{tenant_id}/availability")
def availability(
    tenant_id: UUID,
    service_id: UUID,
    target_date: date = Query(..., alias="date"),
    professional_id: UUID | None = None,
    resource_id: UUID | None = None,
    public: bool = False,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Candidate slots of a day with their availability."""

    SLOT_QUERY_COUNTER.inc()
    day = day_availability(
        db,
        tenant_id=tenant_id,
        service_id=service_id,
        target_date=target_date,
        professional_id=professional_id,
        resource_id=resource_id,
        public_only=public,
    )
    payload = day.as_dict()
    payload["service_id"] = str(service_id)
    return payload


@app.post("/api/v1/tenants/{tenant_id}/recurrences/preview")
def preview_recurrence(
    tenant_id: UUID,
    payload: RecurrencePreview,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    ServiceCatalog(db, tenant_id).tenant()
    config = RecurrenceConfig(frequency=payload.frequency, count=payload.count)
    return {
        "frequency": payload.frequency.value,
        "count": payload.count,
        "end_date": config.end_date(payload.start).isoformat(),
        "dates": [item.isoformat() for item in expand(payload.start, config)],
    }


@app.post("/api/v1/tenants/{tenant_id}/appointments", status_code=status.HTTP_201_CREATED)
def create_appointment(
    tenant_id: UUID,
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
) -> Any:
    """Book a single appointment, or every occurrence of a recurring one."""

    booking = BookingRequest(
        service_id=payload.service_id,
        start=payload.start,
        professional_id=payload.professional_id,
        resource_id=payload.resource_id,
        client_id=payload.client_id,
        created_by=payload.created_by,
        notes=payload.notes,
        actor=payload.actor,
        public_only=payload.created_by is AppointmentCreator.CLIENT,
    )
    tz = tenant_tz(db, tenant_id)

    if payload.recurrence is None:
        try:
            appointment = book_appointment(db, tenant_id=tenant_id, request=booking)
        except SchedulingError as exc:
            BOOKING_COUNTER.labels(outcome=exc.code).inc()
            raise
        BOOKING_COUNTER.labels(outcome="booked").inc()
        return {"appointment": serialize_appointment(appointment, tz=tz)}

    config = RecurrenceConfig(
        frequency=payload.recurrence.frequency, count=payload.recurrence.count
    )
    try:
        outcome = book_recurring(
            db,
            tenant_id=tenant_id,
            request=booking,
            config=config,
            policy=payload.recurrence.policy,
        )
    except PartialRecurrenceFailure as exc:
        BOOKING_COUNTER.labels(outcome="recurrence_rolled_back").inc()
        content = exc.as_dict()
        content["outcome"] = serialize_outcome(exc.outcome, tz=tz)
        return JSONResponse(status_code=exc.status_code, content=content)

    BOOKING_COUNTER.labels(outcome="booked").inc(len(outcome.booked))
    if outcome.failed:
        BOOKING_COUNTER.labels(outcome="recurrence_failed").inc(len(outcome.failed))
    body = {"recurrence": serialize_outcome(outcome, tz=tz)}
    if not outcome.booked:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body)
    if outcome.partial:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=body)
    return body


@app.get("/api/v1/tenants/{tenant_id}/appointments")
def get_appointments(
    tenant_id: UUID,
    target_date: date | None = Query(None, alias="date"),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """List appointments for a tenant."""

    appointments, tz = list_appointments(db, tenant_id=tenant_id, target_date=target_date)
    return {
        "tenant_id": str(tenant_id),
        "appointments": [serialize_appointment(appt, tz=tz) for appt in appointments],
    }


@app.post("/api/v1/tenants/{tenant_id}/appointments/{appointment_id}/{action}")
def change_appointment_status(
    tenant_id: UUID,
    appointment_id: UUID,
    action: AppointmentAction,
    payload: TransitionIn | None = None,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Apply confirm, complete, cancel or no-show to an appointment."""

    payload = payload or TransitionIn()
    appointment = transition_appointment(
        db,
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        action=action,
        actor=payload.actor,
        reason=payload.reason,
    )
    return {"appointment": serialize_appointment(appointment, tz=tenant_tz(db, tenant_id))}


@app.get("/api/v1/tenants/{tenant_id}/appointments/{appointment_id}/activity")
def get_activity(
    tenant_id: UUID,
    appointment_id: UUID,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    entries = appointment_activity(db, tenant_id=tenant_id, appointment_id=appointment_id)
    return {
        "appointment_id": str(appointment_id),
        "activity": [
            {
                "action": entry.action,
                "actor": entry.actor,
                "occurred_at": ensure_utc(entry.occurred_at).isoformat(),
                "details": entry.details,
            }
            for entry in entries
        ],
    }
