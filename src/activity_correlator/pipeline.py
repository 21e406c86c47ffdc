"""Request orchestration: fetch, gate, correlate, categorize, overlay, aggregate, bucket."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, Sequence

from . import afk
from .aggregation import aggregate, resolve_group_by, validate_top_n
from .cache import TtlCache
from .categorizer import CategoryUsage, CompiledRuleSet, categorize_all, category_usage, load_rules
from .config import EngineSettings
from .correlator import BROWSER, EDITOR, correlate
from .errors import ActivityEngineError, MissingStreamError, ValidationError
from .meetings import filter_events, normalize_event, overlay
from .models import (
    CalendarEvent,
    CalendarSummary,
    CategoryRule,
    EngineResult,
    EnrichedActivity,
    RawActivityRecord,
    TimeInterval,
)
from .normalization import BROWSER_APPS, EDITOR_APPS, is_browser_app, is_editor_app
from .periods import BUCKET_SIZES, breakdown
from .query_builder import QueryFilters, QueryRequest, StreamKind, build_query
from .store import StreamCatalog, StreamInfo
from .timeutil import resolve_timezone, validate_range

logger = logging.getLogger(__name__)

# Streams the request cannot do without; the rest only enrich it.
_REQUIRED_KINDS = (StreamKind.WINDOW, StreamKind.CALENDAR)


class EventStore(Protocol):
    async def list_streams(self) -> list[StreamInfo]: ...

    async def query(self, request: QueryRequest) -> list[RawActivityRecord]: ...

    async def get_setting(self, key: str) -> Any: ...

    async def server_info(self) -> dict[str, Any]: ...


@dataclass(slots=True)
class ActivityRequest:
    """Parameters of one correlation pass over ``[start, end)``."""

    start: datetime
    end: datetime
    group_by: tuple[str, ...] = ("app",)
    top_n: Optional[int] = None
    min_duration_seconds: Optional[float] = None
    exclude_system_apps: bool = False
    include_calendar: bool = False
    include_all_day: bool = True
    include_cancelled: bool = False
    bucket_size: Optional[str] = None
    timezone: Optional[str] = None
    filters: QueryFilters = field(default_factory=QueryFilters)


@dataclass(slots=True)
class _CorrelatedPass:
    activities: list[EnrichedActivity]
    calendar_summary: Optional[CalendarSummary]
    streams: dict[str, tuple[str, ...]]


class ActivityEngine:
    """Runs correlation passes against one event store."""

    def __init__(
        self,
        store: EventStore,
        settings: Optional[EngineSettings] = None,
        *,
        rule_cache: Optional[TtlCache[tuple[CategoryRule, ...]]] = None,
        stream_cache: Optional[TtlCache[list[StreamInfo]]] = None,
        categories_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.settings = settings or EngineSettings()
        ttl = self.settings.cache_ttl.total_seconds()
        self.rule_cache = rule_cache or TtlCache("category rules", ttl)
        self.catalog = StreamCatalog(store, stream_cache or TtlCache("stream listing", ttl))
        self.categories_path = categories_path

    def invalidate_caches(self) -> None:
        self.rule_cache.invalidate()
        self.catalog.invalidate()

    async def categories(self) -> tuple[CategoryRule, ...]:
        return await self.rule_cache.get(self._load_rules)

    async def _load_rules(self) -> tuple[CategoryRule, ...]:
        return await load_rules(self.store, fallback_path=self.categories_path)

    async def streams(self) -> dict[StreamKind, list[str]]:
        return await self.catalog.by_kind()

    async def _require(self, grouped: dict[StreamKind, list[str]], kind: StreamKind) -> list[str]:
        ids = grouped.get(kind)
        if not ids:
            found = [stream.id for stream in await self.catalog.streams()]
            raise MissingStreamError(kind.value, found)
        return ids

    def _validate(self, request: ActivityRequest) -> tuple[tuple[str, ...], int, float]:
        validate_range(request.start, request.end)
        group_by = resolve_group_by(request.group_by)
        top_n = validate_top_n(request.top_n if request.top_n is not None else self.settings.top_n)
        min_duration = (
            request.min_duration_seconds
            if request.min_duration_seconds is not None
            else self.settings.min_duration.total_seconds()
        )
        if min_duration < 0:
            raise ValidationError("min_duration_seconds must not be negative")
        if request.bucket_size is not None and request.bucket_size not in BUCKET_SIZES:
            raise ValidationError(
                f"Unknown bucket size {request.bucket_size!r}; expected one of {', '.join(BUCKET_SIZES)}"
            )
        resolve_timezone(request.timezone or self.settings.timezone)
        return group_by, top_n, min_duration

    async def run(self, request: ActivityRequest) -> EngineResult:
        group_by, top_n, min_duration = self._validate(request)
        timezone_name = request.timezone or self.settings.timezone

        correlated = await self._correlate_pass(request)
        combined = correlated.activities
        total = sum(activity.duration_seconds for activity in combined)
        groups = aggregate(
            combined,
            group_by,
            top_n=top_n,
            min_duration_seconds=min_duration,
            exclude_system_apps=request.exclude_system_apps,
            is_system=lambda app: app in self.settings.system_apps,
            total_seconds=total,
        )
        bucketed = (
            breakdown(
                combined,
                request.bucket_size,
                timezone_name=timezone_name,
                range_start=request.start,
                range_end=request.end,
            )
            if request.bucket_size
            else None
        )
        logger.info(
            "Correlated %d activities (%.0fs) into %d groups",
            len(combined),
            total,
            len(groups),
        )
        return EngineResult(
            total_duration_seconds=total,
            groups=tuple(groups),
            time_range=TimeInterval(request.start, (request.end - request.start).total_seconds()),
            calendar_summary=correlated.calendar_summary,
            bucketed=bucketed,
            streams=correlated.streams,
        )

    async def category_usage(self, request: ActivityRequest) -> list[CategoryUsage]:
        """Time per category path over the request range."""
        self._validate(request)
        correlated = await self._correlate_pass(request)
        return category_usage(correlated.activities)

    async def _correlate_pass(self, request: ActivityRequest) -> _CorrelatedPass:
        grouped = await self.streams()
        window_ids = await self._require(grouped, StreamKind.WINDOW)
        calendar_ids = (
            await self._require(grouped, StreamKind.CALENDAR) if request.include_calendar else []
        )

        queries = [
            build_query(
                request.start, request.end, StreamKind.WINDOW, window_ids, filters=request.filters
            )
        ]
        for kind in (StreamKind.BROWSER, StreamKind.EDITOR):
            if grouped.get(kind):
                queries.append(build_query(request.start, request.end, kind, grouped[kind]))
        if grouped.get(StreamKind.AFK):
            # One away-status stream per device; the first is the local one.
            queries.append(
                build_query(request.start, request.end, StreamKind.AFK, grouped[StreamKind.AFK][:1])
            )
        calendar_queries = self._calendar_queries(request.start, request.end, calendar_ids)

        outcomes = await self._fetch_all(queries + calendar_queries)
        fetched = {query.kind: records for query, records in zip(queries, outcomes)}
        calendar_records = outcomes[len(queries):]

        # The event store returns whole events touching the range.
        requested = [(request.start, request.end)]
        afk_records = fetched.get(StreamKind.AFK)
        window = afk.gate(afk.clip_records(fetched[StreamKind.WINDOW], requested), afk_records)
        enrichments = {
            kind_name: afk.gate(fetched[kind], afk_records)
            for kind, kind_name in ((StreamKind.BROWSER, BROWSER), (StreamKind.EDITOR, EDITOR))
            if fetched.get(kind) is not None
        }
        app_filters = (
            {BROWSER: is_browser_app, EDITOR: is_editor_app}
            if self.settings.strict_app_matching
            else None
        )
        activities = correlate(window, enrichments, app_filters=app_filters)

        rules = CompiledRuleSet(await self.categories())
        categorize_all(activities, rules)

        calendar_summary = None
        if calendar_ids:
            meetings = filter_events(
                self._meetings(zip(calendar_ids, calendar_records)),
                include_all_day=request.include_all_day,
                include_cancelled=request.include_cancelled,
            )
            result = overlay(activities, meetings, window=(request.start, request.end))
            categorize_all(result.calendar_only, rules)
            calendar_summary = result.summary
            activities = result.combined

        streams = {query.kind.value: tuple(query.stream_ids) for query in queries}
        if calendar_ids:
            streams[StreamKind.CALENDAR.value] = tuple(calendar_ids)
        return _CorrelatedPass(
            activities=activities,
            calendar_summary=calendar_summary,
            streams=streams,
        )

    async def _fetch_all(
        self, queries: Sequence[QueryRequest]
    ) -> list[Optional[list[RawActivityRecord]]]:
        """Issue every stream read at once; enrichment failures leave that stream out."""
        outcomes = await asyncio.gather(
            *(self.store.query(query) for query in queries), return_exceptions=True
        )
        fetched: list[Optional[list[RawActivityRecord]]] = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                if query.kind in _REQUIRED_KINDS or not isinstance(outcome, ActivityEngineError):
                    raise outcome
                logger.warning("Continuing without %s data: %s", query.kind.value, outcome)
                fetched.append(None)
                continue
            fetched.append(outcome)
        return fetched

    @staticmethod
    def _calendar_queries(
        start: datetime, end: datetime, calendar_ids: Sequence[str]
    ) -> list[QueryRequest]:
        # One query per calendar so every event keeps its source stream.
        return [
            build_query(start, end, StreamKind.CALENDAR, [stream_id]) for stream_id in calendar_ids
        ]

    @staticmethod
    def _meetings(
        sources: Iterable[tuple[str, Optional[Sequence[RawActivityRecord]]]]
    ) -> list[CalendarEvent]:
        meetings: list[CalendarEvent] = []
        for stream_id, records in sources:
            for record in records or ():
                event = normalize_event(record, stream_id)
                if event is not None:
                    meetings.append(event)
        return meetings

    async def calendar_events(
        self,
        start: datetime,
        end: datetime,
        *,
        include_all_day: bool = True,
        include_cancelled: bool = False,
        summary_query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CalendarEvent]:
        validate_range(start, end)
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1")
        calendar_ids = await self._require(await self.streams(), StreamKind.CALENDAR)
        records = await self._fetch_all(self._calendar_queries(start, end, calendar_ids))
        return filter_events(
            self._meetings(zip(calendar_ids, records)),
            include_all_day=include_all_day,
            include_cancelled=include_cancelled,
            summary_query=summary_query,
            limit=limit,
        )

    async def query_events(
        self,
        start: datetime,
        end: datetime,
        kind: StreamKind | str,
        *,
        filters: Optional[QueryFilters] = None,
        stream_ids: Sequence[str] = (),
        custom_program: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        gate_afk: bool = True,
    ) -> list[RawActivityRecord]:
        """Run a single stream query and return its records, newest first."""
        validate_range(start, end)
        try:
            kind = StreamKind(kind)
        except ValueError as exc:
            raise ValidationError(f"Unknown stream kind: {kind!r}") from exc
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1")

        afk_stream_id = None
        window_ids: list[str] = []
        window_apps: tuple[str, ...] = ()
        if kind is not StreamKind.CUSTOM:
            grouped = await self.streams()
            if not stream_ids:
                stream_ids = await self._require(grouped, kind)
            if gate_afk and grouped.get(StreamKind.AFK):
                afk_stream_id = grouped[StreamKind.AFK][0]
            if self.settings.strict_app_matching and kind in (StreamKind.BROWSER, StreamKind.EDITOR):
                window_ids = grouped.get(StreamKind.WINDOW, [])
                window_apps = BROWSER_APPS if kind is StreamKind.BROWSER else EDITOR_APPS

        request = build_query(
            start,
            end,
            kind,
            stream_ids,
            filters=filters,
            afk_stream_id=afk_stream_id,
            window_stream_ids=window_ids,
            window_apps=window_apps,
            custom_program=custom_program,
        )
        records = sorted(await self.store.query(request), key=lambda record: record.start, reverse=True)
        return records[:limit] if limit is not None else records

    async def status(self) -> dict[str, Any]:
        """Reachability of the event store and which streams it offers."""
        info = await self.store.server_info()
        grouped = await self.streams()
        return {
            "server": info,
            "streams": {kind.value: ids for kind, ids in grouped.items()},
        }

