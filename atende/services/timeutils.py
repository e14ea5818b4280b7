from datetime import datetime, timezone

import pytz

from atende.logging_config import get_logger

logger = get_logger("timeutils")

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def tenant_timezone(name: str | None) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {name!r}, using {DEFAULT_TIMEZONE}")
        return pytz.timezone(DEFAULT_TIMEZONE)


def to_local(value: datetime, tz_name: str | None) -> datetime:
    """Convert a UTC instant to the tenant's wall clock."""
    return as_utc(value).astimezone(tenant_timezone(tz_name))
