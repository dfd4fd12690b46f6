# Overview: UTC clock helpers shared by the ledger, promotion windows and settlement leases.

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive). All stored timestamps use this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def after(start: datetime, *, seconds: float = 0, days: int = 0) -> datetime:
    return start + timedelta(days=days, seconds=seconds)


def parse_iso_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """
    Normalize merchant-supplied dates to UTC-naive datetimes.

    - None / "" -> None
    - datetime with tzinfo is converted to UTC; naive is taken as UTC
    - a bare date ("2030-01-01") is midnight UTC
    - trailing "Z" is accepted

    Raises ValueError on anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 with a trailing 'Z'; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
