from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from typing import Any
from uuid import UUID

_request_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_tenant_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_id", default=None
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id", "tenant_id"}


class RequestContextFilter(logging.Filter):
    """Inject request and tenant context variables into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx_var.get()
        record.tenant_id = _tenant_id_ctx_var.get()
        return True


class JSONLogFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are promoted to top level."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "tenant_id": getattr(record, "tenant_id", None),
        }
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRIBUTES:
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    """Route the root logger, uvicorn and celery through the JSON handler."""

    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "celery"):
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        logger.propagate = True

    _configured = True


def set_request_id(request_id: str | None) -> contextvars.Token:
    return _request_id_ctx_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id_ctx_var.reset(token)


def set_tenant_context(tenant_id: UUID | str | None) -> None:
    """Bind the tenant identifier to the current logging context."""

    _tenant_id_ctx_var.set(str(tenant_id) if tenant_id is not None else None)


@contextlib.contextmanager
def tenant_context(tenant_id: UUID | str | None) -> Iterator[None]:
    """Bind a tenant for the duration of a block, restoring the previous one."""

    token = _tenant_id_ctx_var.set(str(tenant_id) if tenant_id is not None else None)
    try:
        yield
    finally:
        _tenant_id_ctx_var.reset(token)


__all__ = [
    "JSONLogFormatter",
    "configure_logging",
    "reset_request_id",
    "set_request_id",
    "set_tenant_context",
    "tenant_context",
]
