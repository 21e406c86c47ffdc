"""Timestamp parsing, timezones and named reporting periods."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidRangeError, ValidationError

PERIODS = (
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "last_7_days",
    "last_30_days",
    "custom",
)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {name}") from exc


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string (or ``YYYY-MM-DD``) into an aware datetime.

    Naive values are taken to be UTC, which is what the event store emits.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time(0))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{name} must be timezone-aware")
    return value


def validate_range(start: datetime, end: datetime) -> None:
    require_aware(start, "start")
    require_aware(end, "end")
    if start >= end:
        raise InvalidRangeError(
            f"start ({start.isoformat()}) must be before end ({end.isoformat()})"
        )


def start_of_day(value: datetime, tz: tzinfo) -> datetime:
    local = value.astimezone(tz)
    return datetime.combine(local.date(), time(0), tzinfo=tz)


def start_of_week(value: datetime, tz: tzinfo) -> datetime:
    """Monday 00:00 of the week containing ``value`` in ``tz``."""
    local = value.astimezone(tz)
    monday = local.date() - timedelta(days=local.weekday())
    return datetime.combine(monday, time(0), tzinfo=tz)


def add_days(day_start: datetime, days: int, tz: tzinfo) -> datetime:
    """Shift a local midnight by whole calendar days, honouring DST changes."""
    local = day_start.astimezone(tz)
    return datetime.combine(local.date() + timedelta(days=days), time(0), tzinfo=tz)


def resolve_period(
    period: str,
    tz: tzinfo,
    *,
    now: Optional[datetime] = None,
    custom_start: Optional[datetime] = None,
    custom_end: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Turn a named period into a concrete ``[start, end)`` range."""
    now = now or datetime.now(timezone.utc)
    today = start_of_day(now, tz)

    if period == "today":
        start, end = today, now
    elif period == "yesterday":
        start, end = add_days(today, -1, tz), today
    elif period == "this_week":
        start, end = start_of_week(now, tz), now
    elif period == "last_week":
        this_week = start_of_week(now, tz)
        start, end = add_days(this_week, -7, tz), this_week
    elif period == "last_7_days":
        start, end = add_days(today, -7, tz), now
    elif period == "last_30_days":
        start, end = add_days(today, -30, tz), now
    elif period == "custom":
        if custom_start is None or custom_end is None:
            raise ValidationError("custom periods need both a start and an end")
        start, end = custom_start, custom_end
    else:
        raise ValidationError(
            f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}"
        )

    validate_range(start, end)
    return start, end


def format_for_api(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()
