from datetime import datetime, timezone
import logging
import zoneinfo

import dateparser

from . import config

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def app_timezone(tz_name: str | None = None) -> zoneinfo.ZoneInfo:
    """Return the canonical application timezone (or the named one)."""
    name = tz_name or config.DEFAULT_TIMEZONE
    try:
        return zoneinfo.ZoneInfo(name)
    except zoneinfo.ZoneInfoNotFoundError:
        logger.exception("failed to find timezone %s; falling back to UTC", name)
        return zoneinfo.ZoneInfo('UTC')


def now_local(tz_name: str | None = None) -> datetime:
    """Current time in the canonical timezone."""
    return now_utc().astimezone(app_timezone(tz_name))


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes; everything is stored as UTC, so a
    naive value coming from the database is UTC wall time.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime | None, tz_name: str | None = None) -> datetime | None:
    """Convert to the canonical timezone. Naive values are treated as UTC."""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(app_timezone(tz_name))


def localize(dt: datetime, tz_name: str | None = None) -> datetime:
    """Attach the canonical timezone to a naive wall-clock datetime.

    Aware datetimes are converted instead.
    """
    tz = app_timezone(tz_name)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def isoformat_local(dt: datetime | None, tz_name: str | None = None) -> str | None:
    if dt is None:
        return None
    return to_local(dt, tz_name).isoformat()


def parse_datetime(value, tz_name: str | None = None) -> datetime:
    """Parse a client-supplied timestamp into an aware datetime.

    ISO-8601 strings are parsed directly; a value without an offset is
    read as wall time in the canonical timezone. Other strings go through
    dateparser (e.g. "tomorrow 9am") relative to the canonical timezone.
    Raises ValueError when the value cannot be understood.
    """
    if isinstance(value, datetime):
        return localize(value, tz_name)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid date: {value!r}")
    s = value.strip()
    # accept a trailing Z which older fromisoformat() rejects
    iso = s[:-1] + '+00:00' if s.endswith(('Z', 'z')) else s
    try:
        return localize(datetime.fromisoformat(iso), tz_name)
    except ValueError:
        pass
    tz = tz_name or config.DEFAULT_TIMEZONE
    parsed = dateparser.parse(
        s,
        languages=['en'],
        settings={
            'TIMEZONE': tz,
            'RETURN_AS_TIMEZONE_AWARE': True,
            'PREFER_DATES_FROM': 'future',
            'RELATIVE_BASE': now_local(tz).replace(tzinfo=None),
        },
    )
    if parsed is not None:
        return localize(parsed, tz_name)
    raise ValueError(f"invalid date: {value!r}")
