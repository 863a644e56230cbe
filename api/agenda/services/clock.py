"""Time zone helpers shared by the scheduling modules."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agenda.core.config import settings
from agenda.core.errors import ConfigurationError


def tenant_timezone(tenant) -> ZoneInfo:
    """Return the tenant timezone, falling back to application default."""

    tz_name = (tenant.timezone if tenant else None) or settings.timezone
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError("Unknown tenant timezone", timezone=tz_name) from exc


def ensure_utc(value: datetime) -> datetime:
    """Coerce a datetime into UTC timezone-aware form."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: datetime, tz: ZoneInfo) -> datetime:
    """Interpret naive values as tenant wall time; convert aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
