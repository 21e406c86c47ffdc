"""Group, rank and summarize enriched activities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from .categorizer import UNCATEGORIZED
from .errors import ValidationError
from .models import AggregatedGroup, EnrichedActivity
from .normalization import is_system_app

logger = logging.getLogger(__name__)

MISSING = "(none)"
KEY_SEPARATOR = " | "
PERCENT_DECIMALS = 2


def _browser_domain(activity: EnrichedActivity) -> Optional[str]:
    return activity.browser.domain if activity.browser else None


def _editor_project(activity: EnrichedActivity) -> Optional[str]:
    return activity.editor.project if activity.editor else None


def _editor_language(activity: EnrichedActivity) -> Optional[str]:
    return activity.editor.language if activity.editor else None


def _editor_file(activity: EnrichedActivity) -> Optional[str]:
    return activity.editor.file if activity.editor else None


GROUP_FIELDS: dict[str, Callable[[EnrichedActivity], Optional[str]]] = {
    "app": lambda activity: activity.app,
    "category": lambda activity: activity.category or UNCATEGORIZED,
    "title": lambda activity: activity.title,
    "domain": _browser_domain,
    "project": _editor_project,
    "language": _editor_language,
    "file": _editor_file,
}

# Names accepted for compatibility with older callers.
_ALIASES = {"application": "app"}


def resolve_group_by(group_by: Sequence[str] | str) -> tuple[str, ...]:
    if isinstance(group_by, str):
        group_by = [part.strip() for part in group_by.split(",") if part.strip()]
    resolved = tuple(_ALIASES.get(name, name) for name in group_by)
    if not resolved:
        raise ValidationError("group_by needs at least one field")
    unknown = [name for name in resolved if name not in GROUP_FIELDS]
    if unknown:
        raise ValidationError(
            f"Unknown grouping field(s): {', '.join(unknown)}; "
            f"expected any of {', '.join(GROUP_FIELDS)}"
        )
    return resolved


def validate_top_n(top_n: int) -> int:
    if top_n < 1:
        raise ValidationError("top_n must be at least 1")
    return top_n


def group_key(activity: EnrichedActivity, fields: Sequence[str]) -> str:
    values = (GROUP_FIELDS[name](activity) or MISSING for name in fields)
    return KEY_SEPARATOR.join(values)


@dataclass(slots=True)
class _Accumulator:
    representative: EnrichedActivity
    seconds: float = 0.0
    count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def add(self, activity: EnrichedActivity) -> None:
        self.seconds += activity.duration_seconds
        self.count += 1
        if self.first_seen is None or activity.start < self.first_seen:
            self.first_seen = activity.start
        if self.last_seen is None or activity.start > self.last_seen:
            self.last_seen = activity.start


def aggregate(
    activities: Iterable[EnrichedActivity],
    group_by: Sequence[str] | str = ("app",),
    *,
    top_n: int = 10,
    min_duration_seconds: float = 0.0,
    exclude_system_apps: bool = False,
    is_system: Callable[[str], bool] = is_system_app,
    total_seconds: Optional[float] = None,
) -> list[AggregatedGroup]:
    """Rank activity groups by time spent.

    Percentages are relative to ``total_seconds`` (by default the duration of
    every activity passed in, before any filtering) and rounded to two
    decimals. Ties in duration are ordered by group key.
    """
    fields = resolve_group_by(group_by)
    validate_top_n(top_n)
    activities = list(activities)
    if total_seconds is None:
        total_seconds = sum(activity.duration_seconds for activity in activities)

    groups: dict[str, _Accumulator] = {}
    dropped = 0
    for activity in activities:
        if activity.duration_seconds < min_duration_seconds:
            dropped += 1
            continue
        if exclude_system_apps and not activity.calendar_only and is_system(activity.app):
            dropped += 1
            continue
        key = group_key(activity, fields)
        accumulator = groups.get(key)
        if accumulator is None:
            accumulator = groups[key] = _Accumulator(representative=activity)
        accumulator.add(activity)

    ranked = sorted(groups.items(), key=lambda item: (-item[1].seconds, item[0]))[:top_n]
    logger.debug(
        "Aggregated %d activities into %d groups (%d dropped), keeping %d",
        len(activities),
        len(groups),
        dropped,
        len(ranked),
    )
    return [
        AggregatedGroup(
            key=key,
            total_duration_seconds=accumulator.seconds,
            percentage_of_total=percentage(accumulator.seconds, total_seconds),
            event_count=accumulator.count,
            first_seen=accumulator.first_seen,  # type: ignore[arg-type]
            last_seen=accumulator.last_seen,  # type: ignore[arg-type]
            representative=accumulator.representative,
        )
        for key, accumulator in ranked
    ]


def percentage(value: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round(value / total * 100, PERCENT_DECIMALS)
