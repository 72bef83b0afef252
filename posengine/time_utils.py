# Overview: Time helpers; all stored timestamps are UTC-naive.

"""
Storage keeps UTC without tzinfo. The API speaks ISO-8601 with a trailing Z.
Document numbers are scoped to the UTC month of their business date.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_business_time(value) -> datetime | None:
    """
    Normalize a client-supplied business time (order date, expected date).

    Accepts None or "" (no value), a datetime, or an ISO-8601 string: a bare
    date means midnight UTC, a naive datetime is taken as UTC, and an offset
    or Z is converted. Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text[-1] in "zZ":
            text = text[:-1] + "+00:00"
        if len(text) == 10:
            parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        else:
            parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported time value: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: datetime | None) -> str | None:
    """Second-precision ISO-8601 with Z, e.g. 2026-10-17T09:30:00Z."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def period_code(dt: datetime) -> str:
    """Monthly sequence scope, e.g. 2026-10 -> '2610'."""
    return f"{dt.year % 100:02d}{dt.month:02d}"
