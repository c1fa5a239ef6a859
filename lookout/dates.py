from datetime import date, datetime, timedelta, timezone

import dateutil.parser

SECONDS_PER_DAY = 24 * 60 * 60


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-ish carrier/DB timestamp. Returns None for empty or unparseable input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None
    try:
        return dateutil.parser.parse(text)
    except (ValueError, OverflowError):
        return None


def calendar_day(value) -> str | None:
    """
    Day-only form (YYYY-MM-DD) of a timestamp, as reported.
    The offset is not applied: the same scan reported on both legs keeps the carrier's local day.
    """
    parsed = parse_timestamp(value)
    return parsed.date().isoformat() if parsed else None


def to_utc(dt: datetime) -> datetime:
    """Naive datetimes are assumed to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """floor((later - earlier) / 1 day), never negative."""
    seconds = (to_utc(later) - to_utc(earlier)).total_seconds()
    return max(0, int(seconds // SECONDS_PER_DAY))


def add_days(dt: datetime, days: int) -> datetime:
    return to_utc(dt) + timedelta(days=days)


def iso(dt: datetime | None) -> str | None:
    return to_utc(dt).isoformat() if dt else None
