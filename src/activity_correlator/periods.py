"""Hourly, daily and weekly breakdowns of correlated activity."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, Optional, Sequence

from .errors import ValidationError
from .intervals import overlap_seconds
from .models import Bucket, EnrichedActivity, PeriodBreakdown
from .timeutil import add_days, resolve_timezone, start_of_day, start_of_week

logger = logging.getLogger(__name__)

BUCKET_SIZES = ("hour", "day", "week")


def bucket_start(instant: datetime, size: str, tz: tzinfo) -> datetime:
    """Truncate ``instant`` to the start of its bucket in ``tz``."""
    if size == "hour":
        local = instant.astimezone(tz)
        return local.replace(minute=0, second=0, microsecond=0)
    if size == "day":
        return start_of_day(instant, tz)
    if size == "week":
        return start_of_week(instant, tz)
    raise ValidationError(f"Unknown bucket size {size!r}; expected one of {', '.join(BUCKET_SIZES)}")


def next_bucket(start: datetime, size: str, tz: tzinfo) -> datetime:
    if size == "hour":
        # Step in absolute time so DST transitions neither skip nor repeat an hour.
        return (start.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(tz)
    if size == "day":
        return add_days(start, 1, tz)
    if size == "week":
        return add_days(start, 7, tz)
    raise ValidationError(f"Unknown bucket size {size!r}; expected one of {', '.join(BUCKET_SIZES)}")


def bucket_label(start: datetime, size: str) -> str:
    if size == "hour":
        return start.strftime("%Y-%m-%d %H:00")
    if size == "day":
        return start.strftime("%Y-%m-%d")
    iso_year, iso_week, _ = start.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def _bucket_spans(
    first: datetime, last: datetime, size: str, tz: tzinfo
) -> list[tuple[datetime, datetime]]:
    spans: list[tuple[datetime, datetime]] = []
    cursor = bucket_start(first, size, tz)
    while cursor < last:
        following = next_bucket(cursor, size, tz)
        spans.append((cursor, following))
        cursor = following
    return spans


def breakdown(
    activities: Sequence[EnrichedActivity],
    size: str,
    *,
    timezone_name: Optional[str] = None,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> PeriodBreakdown:
    """Spread activity time over fixed buckets.

    A record crossing a bucket boundary contributes to each bucket exactly the
    part of it that falls inside, so the bucket totals add up to the input.
    With a range given, every bucket touching it is reported even when empty.
    """
    if size not in BUCKET_SIZES:
        raise ValidationError(f"Unknown bucket size {size!r}; expected one of {', '.join(BUCKET_SIZES)}")
    tz = resolve_timezone(timezone_name)
    timed = [activity for activity in activities if activity.duration_seconds > 0]

    starts = [activity.start for activity in timed]
    ends = [activity.end for activity in timed]
    if range_start is not None:
        starts.append(range_start)
    if range_end is not None:
        ends.append(range_end)
    if not starts or not ends:
        return PeriodBreakdown(size, timezone_name or "UTC", (), ())

    spans = _bucket_spans(min(starts), max(ends), size, tz)
    totals = [0.0] * len(spans)
    by_app: list[defaultdict[str, float]] = [defaultdict(float) for _ in spans]

    span_index = 0
    for activity in sorted(timed, key=lambda item: item.start):
        activity_span = (activity.start, activity.end)
        while span_index < len(spans) and spans[span_index][1] <= activity.start:
            span_index += 1
        position = span_index
        while position < len(spans) and spans[position][0] < activity.end:
            seconds = overlap_seconds(activity_span, spans[position])
            if seconds > 0:
                totals[position] += seconds
                by_app[position][activity.app] += seconds
            position += 1

    buckets = tuple(
        Bucket(
            start=start,
            end=end,
            label=bucket_label(start, size),
            active_seconds=totals[position],
            top_app=_top_key(by_app[position]),
        )
        for position, (start, end) in enumerate(spans)
    )
    result = PeriodBreakdown(
        bucket_size=size,
        timezone=timezone_name or "UTC",
        buckets=buckets,
        insights=tuple(insights(buckets, timed)),
    )
    logger.debug("Bucketed %d activities into %d %s buckets", len(timed), len(buckets), size)
    return result


def _top_key(totals: dict[str, float]) -> Optional[str]:
    if not totals:
        return None
    return min(totals.items(), key=lambda item: (-item[1], item[0]))[0]


def insights(buckets: Sequence[Bucket], activities: Iterable[EnrichedActivity]) -> list[str]:
    """Short human-readable observations derived from bucket totals."""
    total = sum(bucket.active_seconds for bucket in buckets)
    if not buckets or total <= 0:
        return []
    lines = [f"Total active time: {total / 3600:.2f} hours"]

    first, last = buckets[0].start, buckets[-1].end
    days = max(1, round((last - first).total_seconds() / 86400))
    if days > 1:
        lines.append(f"Average: {total / 3600 / days:.2f} hours per day")

    busiest = min(buckets, key=lambda bucket: (-bucket.active_seconds, bucket.start))
    lines.append(f"Most active period: {busiest.label} ({busiest.active_seconds / 3600:.2f}h)")

    app_totals: defaultdict[str, float] = defaultdict(float)
    for activity in activities:
        app_totals[activity.app] += activity.duration_seconds
    top_app = _top_key(app_totals)
    if top_app:
        share = app_totals[top_app] / total * 100
        lines.append(f"Most used application: {top_app} ({share:.1f}%)")
    return lines
