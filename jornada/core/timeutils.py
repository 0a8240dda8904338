from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jornada.core.exceptions import ConfigurationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime. Naive values (SQLite round-trips) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(
            f"Unknown time zone: {name}",
            {"time_zone": name},
            code="invalid_time_zone",
        ) from exc


def local_day(instant: datetime, zone: ZoneInfo) -> date:
    """Calendar date of `instant` as seen on a wall clock in `zone`."""
    return as_utc(instant).astimezone(zone).date()
