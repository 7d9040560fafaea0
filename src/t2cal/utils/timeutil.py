"""Time helpers for task snapshots and ICS encoding.

Task exports carry timestamps in two shapes:
- epoch milliseconds (the host's native representation), e.g. 1767430800000
- ISO 8601 strings, e.g. "2026-01-03T09:00:00+01:00" (naive values are read as UTC)

Day-only due dates arrive as "YYYY-MM-DD" and are kept as `date` objects; they
are never shifted across timezones.

Public API
- parse_instant(value) -> datetime | None
- parse_day(value) -> date | None
- parse_duration_ms(value) -> timedelta | None
- to_utc(dt) -> datetime
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from dateutil import parser as dtparser

__all__ = [
    "parse_day",
    "parse_duration_ms",
    "parse_instant",
    "to_utc",
]


def to_utc(dt: datetime) -> datetime:
    """Return `dt` as an aware UTC datetime; naive values are assumed to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _from_epoch_ms(ms: float) -> datetime:
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=UTC)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Timestamp out of range: {ms!r}") from exc


def parse_instant(value: object) -> datetime | None:
    """Parse epoch milliseconds, an ISO 8601 string or a datetime into aware UTC.

    Falsy values (None, 0, "") mean "unset" and return None. Anything else that
    cannot be read as an instant raises ValueError.
    """
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, int | float):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        s = value.strip()
        if s.lstrip("-").isdigit():
            return _from_epoch_ms(int(s))
        try:
            return to_utc(dtparser.isoparse(s))
        except OverflowError as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    raise ValueError(f"Invalid timestamp: {value!r}")


def parse_day(value: object) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    y, m, d = [int(x) for x in s.split("-")]
    return date(y, m, d)


def parse_duration_ms(value: object) -> timedelta | None:
    """Milliseconds -> timedelta; zero, negative or missing estimates are unset."""
    if value is None or value == "":
        return None
    if isinstance(value, timedelta):
        return value if value > timedelta(0) else None
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise ValueError(f"Invalid duration: {value!r}")
    ms = float(value)
    if ms <= 0:
        return None
    try:
        return timedelta(milliseconds=ms)
    except OverflowError as exc:
        raise ValueError(f"Duration out of range: {value!r}") from exc
