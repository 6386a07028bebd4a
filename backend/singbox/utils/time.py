from datetime import date, datetime, time, timedelta, timezone


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)


def parse_iso_instant(value: str) -> datetime:
    """Parse an ISO 8601 instant; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_day_bounds_utc(day: date, tz_offset_minutes: int) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) window covering a local calendar day.

    ``tz_offset_minutes`` follows the browser convention (UTC minus local).
    """
    start = datetime.combine(day, time.min, tzinfo=timezone.utc) + timedelta(minutes=tz_offset_minutes)
    return start, start + timedelta(days=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
