"""Datetime helpers: lax input -> timezone-aware UTC output."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts the ISO 8601 timestamps GitHub returns (``2026-02-02T22:21:29Z``)
    as well as the looser forms stored by older records
    (``2026-02-02 22:21:29+00``, ``2026-02-02``).

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def is_older_than(dt: datetime, age: timedelta, now: datetime | None = None) -> bool:
    """Return True when ``dt`` lies more than ``age`` before ``now``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    reference = now if now is not None else now_utc()
    return reference - dt > age
