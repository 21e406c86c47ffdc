"""FastAPI application exposing the correlation engine as a local JSON API."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import EngineSettings
from .errors import (
    ActivityEngineError,
    InvalidRangeError,
    MissingStreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)
from .models import (
    AggregatedGroup,
    CalendarEvent,
    CalendarSummary,
    EngineResult,
    EnrichedActivity,
    PeriodBreakdown,
    RawActivityRecord,
)
from .paths import get_categories_path
from .pipeline import ActivityEngine, ActivityRequest, EventStore
from .query_builder import QueryFilters
from .store import ActivityWatchStore
from .timeutil import resolve_period, resolve_timezone

logger = logging.getLogger(__name__)


class RangePayload(BaseModel):
    period: str = "today"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timezone: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ActivityPayload(RangePayload):
    group_by: Union[List[str], str] = Field(default_factory=lambda: ["app"])
    top_n: Optional[int] = None
    min_duration_seconds: Optional[float] = None
    exclude_system_apps: bool = False
    include_calendar: bool = False
    include_all_day: bool = True
    include_cancelled: bool = False
    bucket_size: Optional[str] = None
    include_apps: List[str] = Field(default_factory=list)
    exclude_apps: List[str] = Field(default_factory=list)
    title_patterns: List[str] = Field(default_factory=list)


class QueryPayload(RangePayload):
    kind: str = "window"
    stream_ids: List[str] = Field(default_factory=list)
    program: Optional[List[str]] = None
    include_apps: List[str] = Field(default_factory=list)
    exclude_apps: List[str] = Field(default_factory=list)
    include_domains: List[str] = Field(default_factory=list)
    title_patterns: List[str] = Field(default_factory=list)
    min_duration_seconds: float = 0.0
    limit: Optional[int] = None
    gate_afk: bool = True


def create_app(
    *,
    settings: Optional[EngineSettings] = None,
    store: Optional[EventStore] = None,
    categories_path: Optional[Path] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_settings = settings or EngineSettings.from_env()
    resolved_store = store or ActivityWatchStore(
        resolved_settings.server_url,
        timeout=resolved_settings.request_timeout.total_seconds(),
    )
    engine = ActivityEngine(
        resolved_store,
        resolved_settings,
        categories_path=categories_path or get_categories_path(),
    )

    app = FastAPI(title="Activity Correlator", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = engine
    app.state.settings = resolved_settings

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        aclose = getattr(resolved_store, "aclose", None)
        if aclose is not None:
            await aclose()

    @app.get("/api/status")
    async def status(request: Request) -> Dict[str, Any]:
        try:
            payload = await request.app.state.engine.status()
        except ActivityEngineError as exc:
            raise _http_error(exc) from exc
        return {
            "server_url": resolved_settings.server_url,
            "timezone": resolved_settings.timezone,
            **payload,
        }

    @app.post("/api/activity")
    async def activity(payload: ActivityPayload, request: Request) -> Dict[str, Any]:
        try:
            start, end = _resolve_range(payload, resolved_settings)
            result = await request.app.state.engine.run(
                ActivityRequest(
                    start=start,
                    end=end,
                    group_by=(
                        tuple(payload.group_by)
                        if isinstance(payload.group_by, list)
                        else payload.group_by
                    ),
                    top_n=payload.top_n,
                    min_duration_seconds=payload.min_duration_seconds,
                    exclude_system_apps=payload.exclude_system_apps,
                    include_calendar=payload.include_calendar,
                    include_all_day=payload.include_all_day,
                    include_cancelled=payload.include_cancelled,
                    bucket_size=payload.bucket_size,
                    timezone=payload.timezone,
                    filters=QueryFilters(
                        include_apps=tuple(payload.include_apps),
                        exclude_apps=tuple(payload.exclude_apps),
                        title_patterns=tuple(payload.title_patterns),
                    ),
                )
            )
        except ActivityEngineError as exc:
            raise _http_error(exc) from exc
        return _result_payload(result)

    @app.get("/api/categories")
    async def categories(
        request: Request,
        period: Optional[str] = Query(
            default=None,
            description="Also report time per category over this named period.",
        ),
    ) -> Dict[str, Any]:
        engine: ActivityEngine = request.app.state.engine
        try:
            rules = await engine.categories()
            usage = None
            if period:
                start, end = _resolve_range(RangePayload(period=period), resolved_settings)
                usage = await engine.category_usage(ActivityRequest(start=start, end=end))
        except ActivityEngineError as exc:
            raise _http_error(exc) from exc
        return {
            "categories": [
                {
                    "id": rule.id,
                    "name": list(rule.name_path),
                    "label": rule.label,
                    "regex": rule.regex,
                    "color": rule.color_hint,
                    "score": rule.score_hint,
                }
                for rule in rules
            ],
            "usage": (
                [
                    {
                        "category": item.category,
                        "seconds": item.duration_seconds,
                        "percentage": item.percentage,
                        "event_count": item.event_count,
                    }
                    for item in usage
                ]
                if usage is not None
                else None
            ),
        }

    @app.get("/api/calendar")
    async def calendar(
        request: Request,
        period: str = Query(default="today"),
        include_all_day: bool = Query(default=True),
        include_cancelled: bool = Query(default=False),
        summary_query: Optional[str] = Query(default=None),
        limit: Optional[int] = Query(default=None),
    ) -> Dict[str, Any]:
        try:
            start, end = _resolve_range(RangePayload(period=period), resolved_settings)
            events = await request.app.state.engine.calendar_events(
                start,
                end,
                include_all_day=include_all_day,
                include_cancelled=include_cancelled,
                summary_query=summary_query,
                limit=limit,
            )
        except ActivityEngineError as exc:
            raise _http_error(exc) from exc
        return {
            "time_range": {"start": start.isoformat(), "end": end.isoformat()},
            "events": [_meeting_payload(event) for event in events],
        }

    @app.post("/api/query")
    async def query(payload: QueryPayload, request: Request) -> Dict[str, Any]:
        try:
            start, end = _resolve_range(payload, resolved_settings)
            records = await request.app.state.engine.query_events(
                start,
                end,
                payload.kind,
                filters=QueryFilters(
                    include_apps=tuple(payload.include_apps),
                    exclude_apps=tuple(payload.exclude_apps),
                    include_domains=tuple(payload.include_domains),
                    title_patterns=tuple(payload.title_patterns),
                    min_duration_seconds=payload.min_duration_seconds,
                ),
                stream_ids=tuple(payload.stream_ids),
                custom_program=payload.program,
                limit=payload.limit,
                gate_afk=payload.gate_afk,
            )
        except ActivityEngineError as exc:
            raise _http_error(exc) from exc
        return {
            "count": len(records),
            "total_duration_seconds": sum(record.duration_seconds for record in records),
            "events": [_record_payload(record) for record in records],
        }

    @app.post("/api/cache/invalidate")
    def invalidate_cache(request: Request) -> Dict[str, Any]:
        request.app.state.engine.invalidate_caches()
        return {"invalidated": True}

    return app


def _http_error(exc: ActivityEngineError) -> HTTPException:
    if isinstance(exc, (InvalidRangeError, ValidationError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, MissingStreamError):
        return HTTPException(
            status_code=404,
            detail={"message": str(exc), "kind": exc.kind, "found": exc.found},
        )
    if isinstance(exc, UpstreamTimeoutError):
        return HTTPException(status_code=504, detail=str(exc))
    if isinstance(exc, UpstreamUnavailableError):
        return HTTPException(status_code=502, detail=str(exc))
    logger.error("Unhandled engine error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _resolve_range(payload: RangePayload, settings: EngineSettings) -> tuple[datetime, datetime]:
    tz = resolve_timezone(payload.timezone or settings.timezone)
    if payload.start is not None or payload.end is not None:
        if payload.start is None or payload.end is None:
            raise ValidationError("start and end must be given together")
        return resolve_period("custom", tz, custom_start=payload.start, custom_end=payload.end)
    return resolve_period(payload.period, tz)


def _result_payload(result: EngineResult) -> Dict[str, Any]:
    return {
        "total_duration_seconds": result.total_duration_seconds,
        "time_range": {
            "start": result.time_range.start.isoformat(),
            "end": result.time_range.end.isoformat(),
        },
        "groups": [_group_payload(group) for group in result.groups],
        "calendar_summary": (
            _calendar_summary_payload(result.calendar_summary)
            if result.calendar_summary is not None
            else None
        ),
        "bucketed": _breakdown_payload(result.bucketed) if result.bucketed is not None else None,
        "streams": {kind: list(ids) for kind, ids in result.streams.items()},
    }


def _group_payload(group: AggregatedGroup) -> Dict[str, Any]:
    return {
        "key": group.key,
        "total_duration_seconds": group.total_duration_seconds,
        "percentage_of_total": group.percentage_of_total,
        "event_count": group.event_count,
        "first_seen": group.first_seen.isoformat(),
        "last_seen": group.last_seen.isoformat(),
        "representative": _activity_payload(group.representative),
    }


def _activity_payload(activity: EnrichedActivity) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "start": activity.start.isoformat(),
        "duration_seconds": activity.duration_seconds,
        "app": activity.app,
        "title": activity.title,
        "category": activity.category,
        "calendar_only": activity.calendar_only,
    }
    if activity.browser is not None:
        payload["browser"] = {
            "url": activity.browser.url,
            "domain": activity.browser.domain,
            "title": activity.browser.title,
        }
    if activity.editor is not None:
        payload["editor"] = {
            "file": activity.editor.file,
            "project": activity.editor.project,
            "language": activity.editor.language,
            "branch": activity.editor.git.branch if activity.editor.git else None,
        }
    if activity.calendar:
        payload["calendar"] = [
            {
                "meeting_id": annotation.meeting_id,
                "title": annotation.title,
                "overlap_seconds": annotation.overlap_seconds,
            }
            for annotation in activity.calendar
        ]
    return payload


def _calendar_summary_payload(summary: CalendarSummary) -> Dict[str, Any]:
    return {
        "focus_seconds": summary.focus_seconds,
        "meeting_seconds": summary.meeting_seconds,
        "meeting_only_seconds": summary.meeting_only_seconds,
        "overlap_seconds": summary.overlap_seconds,
        "union_seconds": summary.union_seconds,
        "meeting_count": summary.meeting_count,
        "meetings": [
            {
                "meeting_id": meeting.meeting_id,
                "title": meeting.title,
                "scheduled_seconds": meeting.scheduled_seconds,
                "overlap_seconds": meeting.overlap_seconds,
                "meeting_only_seconds": meeting.meeting_only_seconds,
            }
            for meeting in summary.meetings
        ],
    }


def _breakdown_payload(breakdown: PeriodBreakdown) -> Dict[str, Any]:
    return {
        "bucket_size": breakdown.bucket_size,
        "timezone": breakdown.timezone,
        "buckets": [
            {
                "start": bucket.start.isoformat(),
                "end": bucket.end.isoformat(),
                "label": bucket.label,
                "active_seconds": bucket.active_seconds,
                "top_app": bucket.top_app,
            }
            for bucket in breakdown.buckets
        ],
        "insights": list(breakdown.insights),
    }


def _meeting_payload(event: CalendarEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "start": event.start.isoformat(),
        "end": event.end.isoformat(),
        "duration_seconds": event.duration_seconds,
        "status": event.status,
        "all_day": event.is_all_day,
        "calendar": event.calendar,
        "location": event.location,
        "attendees": [
            {
                "name": attendee.name,
                "email": attendee.email,
                "response_status": attendee.response_status,
                "organizer": attendee.organizer,
            }
            for attendee in event.attendees
        ],
    }


def _record_payload(record: RawActivityRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "timestamp": record.start.isoformat(),
        "duration": record.duration_seconds,
        "data": dict(record.fields),
    }
