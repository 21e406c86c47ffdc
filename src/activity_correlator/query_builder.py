"""Translate request parameters into event-store query programs."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from .errors import MissingStreamError, ValidationError
from .timeutil import format_for_api, validate_range

logger = logging.getLogger(__name__)


class StreamKind(str, Enum):
    WINDOW = "window"
    BROWSER = "browser"
    EDITOR = "editor"
    AFK = "afk"
    CALENDAR = "calendar"
    CUSTOM = "custom"


PRESENT_STATUS = "not-afk"
AWAY_STATUS = "afk"

# Kinds whose intervals only count while the user is present.
_AFK_GATED_KINDS = frozenset({StreamKind.WINDOW, StreamKind.BROWSER, StreamKind.EDITOR})


@dataclass(slots=True, frozen=True)
class QueryFilters:
    """Optional narrowing applied inside the query program.

    App lists apply to window streams, domains to browser streams, and title
    patterns to both. Several title patterns or domains are alternatives.
    """

    include_apps: tuple[str, ...] = ()
    exclude_apps: tuple[str, ...] = ()
    include_domains: tuple[str, ...] = ()
    title_patterns: tuple[str, ...] = ()
    min_duration_seconds: float = 0.0


@dataclass(slots=True, frozen=True)
class QueryRequest:
    kind: StreamKind
    start: datetime
    end: datetime
    program: tuple[str, ...]
    stream_ids: tuple[str, ...]
    min_duration_seconds: float = 0.0

    @property
    def timeperiods(self) -> list[str]:
        return [f"{format_for_api(self.start)}/{format_for_api(self.end)}"]


def build_query(
    start: datetime,
    end: datetime,
    kind: StreamKind | str,
    stream_ids: Sequence[str] = (),
    *,
    filters: Optional[QueryFilters] = None,
    afk_stream_id: Optional[str] = None,
    window_stream_ids: Sequence[str] = (),
    window_apps: Sequence[str] = (),
    custom_program: Optional[Sequence[str]] = None,
) -> QueryRequest:
    """Build the program reading ``stream_ids`` of ``kind`` over ``[start, end)``.

    ``afk_stream_id`` adds an intersection with present periods. For browser and
    editor streams, ``window_stream_ids`` plus ``window_apps`` restrict the result
    to times when one of those apps had focus.
    """
    validate_range(start, end)
    try:
        kind = StreamKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown stream kind: {kind!r}") from exc
    filters = filters or QueryFilters()
    if filters.min_duration_seconds < 0:
        raise ValidationError("min_duration_seconds must not be negative")
    ids = tuple(stream_ids)

    if kind is StreamKind.CUSTOM:
        if not ids:
            raise ValidationError("custom queries must name at least one stream id")
        if not custom_program:
            raise ValidationError("custom queries need a program")
        logger.debug("Using custom program over %s", ", ".join(ids))
        return QueryRequest(
            kind=kind,
            start=start,
            end=end,
            program=tuple(custom_program),
            stream_ids=ids,
            min_duration_seconds=filters.min_duration_seconds,
        )

    if not ids:
        raise MissingStreamError(kind.value)

    program = [f"events = {_select(ids)};"]
    touched = list(ids)

    if afk_stream_id and kind in _AFK_GATED_KINDS:
        program.append(f"afk_events = query_bucket({_quote(afk_stream_id)});")
        program.append(
            f'not_afk = filter_keyvals(afk_events, "status", [{_quote(PRESENT_STATUS)}]);'
        )
        program.append("events = filter_period_intersect(events, not_afk);")
        touched.append(afk_stream_id)

    if kind in (StreamKind.BROWSER, StreamKind.EDITOR) and window_stream_ids and window_apps:
        program.append(f"window_events = {_select(window_stream_ids)};")
        program.append(
            "focused = filter_keyvals(window_events, \"app\", "
            f"{json.dumps(list(window_apps))});"
        )
        program.append("events = filter_period_intersect(events, focused);")
        touched.extend(window_stream_ids)

    if kind is StreamKind.WINDOW:
        if filters.include_apps:
            program.append(
                f'events = filter_keyvals(events, "app", {json.dumps(list(filters.include_apps))});'
            )
        if filters.exclude_apps:
            program.append(
                f'events = exclude_keyvals(events, "app", {json.dumps(list(filters.exclude_apps))});'
            )

    if kind is StreamKind.BROWSER and filters.include_domains:
        pattern = "|".join(re.escape(domain) for domain in filters.include_domains)
        program.append(f'events = filter_keyvals_regex(events, "url", {_quote(pattern)});')

    if kind in (StreamKind.WINDOW, StreamKind.BROWSER) and filters.title_patterns:
        for candidate in filters.title_patterns:
            try:
                re.compile(candidate)
            except re.error as exc:
                raise ValidationError(f"Invalid title pattern {candidate!r}: {exc}") from exc
        pattern = "|".join(f"(?:{candidate})" for candidate in filters.title_patterns)
        program.append(f'events = filter_keyvals_regex(events, "title", {_quote(pattern)});')

    program.append("RETURN = events;")

    return QueryRequest(
        kind=kind,
        start=start,
        end=end,
        program=tuple(program),
        stream_ids=tuple(dict.fromkeys(touched)),
        min_duration_seconds=filters.min_duration_seconds,
    )


def _quote(value: str) -> str:
    return json.dumps(value)


def _select(stream_ids: Sequence[str]) -> str:
    if len(stream_ids) == 1:
        return f"query_bucket({_quote(stream_ids[0])})"
    selections = ", ".join(f"query_bucket({_quote(stream_id)})" for stream_id in stream_ids)
    return f"merge_events([{selections}])"
