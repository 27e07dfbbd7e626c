from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def _local_midnight_as_utc(day: date, tz: ZoneInfo) -> datetime:
    local = datetime.combine(day, time.min, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_range(
    start: Optional[str], end: Optional[str], tz_name: str
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Convert inclusive "YYYY-MM-DD" bounds in the reference zone to a UTC-naive
    half-open range [start, end).

    Full ISO datetimes are accepted as well and used as-is (normalized to UTC).
    """
    tz = ZoneInfo(tz_name)

    def _bound(value: Optional[str], *, is_end: bool) -> Optional[datetime]:
        if value is None or not value.strip():
            return None
        s = value.strip()
        if len(s) == 10:
            day = date.fromisoformat(s)
            if is_end:
                day = day + timedelta(days=1)
            return _local_midnight_as_utc(day, tz)
        return parse_iso_datetime(s)

    return _bound(start, is_end=False), _bound(end, is_end=True)


def month_window(reference: datetime, tz_name: str, months_back: int = 0) -> tuple[datetime, datetime]:
    """
    Calendar-month window [start, end) containing `reference` (UTC-naive),
    shifted back by `months_back` months, evaluated in the reference zone.

    Returned bounds are UTC-naive, directly comparable with stored timestamps.
    """
    tz = ZoneInfo(tz_name)
    local = reference.replace(tzinfo=timezone.utc).astimezone(tz)

    month_index = local.year * 12 + (local.month - 1) - months_back
    year, month = divmod(month_index, 12)
    return month_bounds(year, month + 1, tz_name)


def month_bounds(year: int, month: int, tz_name: str) -> tuple[datetime, datetime]:
    """[first of month, first of next month) in the reference zone, as UTC-naive."""
    tz = ZoneInfo(tz_name)
    start_day = date(year, month, 1)
    end_day = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return _local_midnight_as_utc(start_day, tz), _local_midnight_as_utc(end_day, tz)


def year_bounds(year: int, tz_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    return _local_midnight_as_utc(date(year, 1, 1), tz), _local_midnight_as_utc(date(year + 1, 1, 1), tz)


def local_now(tz_name: str) -> datetime:
    """Current wall-clock time in the reference zone (aware)."""
    return datetime.now(timezone.utc).astimezone(ZoneInfo(tz_name))
