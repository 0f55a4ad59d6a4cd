from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union

DateLike = Union[str, date, datetime, None]


def utcnow() -> datetime:
    """Current time in UTC, tz stripped (the canonical storage form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    Naive input is taken as UTC; "Z" and explicit offsets are converted.
    Empty strings parse to None.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def coerce_datetime(value: DateLike, *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Normalize a report boundary to a UTC-naive datetime.

    A bare date becomes midnight, or the last microsecond of that day when
    end_of_day is set, so that date-only ranges stay inclusive.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)
    if isinstance(value, str):
        s = value.strip()
        if len(s) == 10:
            return coerce_datetime(date.fromisoformat(s), end_of_day=end_of_day)
        return parse_iso_datetime(s)
    raise ValueError(f"unsupported datetime value: {value!r}")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to ISO-8601 with a trailing 'Z'; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
