"""Domain models for correlated activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional


@dataclass(slots=True, frozen=True)
class TimeInterval:
    """A half-open span of time starting at ``start``."""

    start: datetime
    duration_seconds: float

    def __post_init__(self) -> None:
        if self.duration_seconds < 0:
            raise ValueError("duration_seconds must not be negative")

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration_seconds)


@dataclass(slots=True, frozen=True)
class RawActivityRecord:
    """An interval as returned by the event store, with its source fields."""

    start: datetime
    duration_seconds: float
    fields: Mapping[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration_seconds)

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.start, self.duration_seconds)

    def get_str(self, key: str) -> Optional[str]:
        value = self.fields.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None


@dataclass(slots=True, frozen=True)
class GitInfo:
    branch: str
    commit: Optional[str] = None
    repository: Optional[str] = None


@dataclass(slots=True, frozen=True)
class BrowserPayload:
    url: str
    domain: str
    title: Optional[str] = None
    audible: bool = False
    incognito: bool = False
    tab_count: Optional[int] = None


@dataclass(slots=True, frozen=True)
class EditorPayload:
    file: str
    project: Optional[str] = None
    language: Optional[str] = None
    git: Optional[GitInfo] = None


@dataclass(slots=True, frozen=True)
class CalendarAnnotation:
    """A meeting that overlaps an activity, and by how much."""

    meeting_id: str
    title: str
    overlap_seconds: float


@dataclass(slots=True)
class EnrichedActivity:
    """A window-focus interval with whatever metadata overlapped it."""

    start: datetime
    duration_seconds: float
    app: str
    title: str
    browser: Optional[BrowserPayload] = None
    editor: Optional[EditorPayload] = None
    category: Optional[str] = None
    calendar: list[CalendarAnnotation] = field(default_factory=list)
    calendar_only: bool = False

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration_seconds)


@dataclass(slots=True, frozen=True)
class CategoryRule:
    """A hierarchical category and the regex that selects it."""

    id: int
    name_path: tuple[str, ...]
    regex: Optional[str] = None
    color_hint: Optional[str] = None
    score_hint: Optional[float] = None

    @property
    def priority_depth(self) -> int:
        return len(self.name_path)

    @property
    def label(self) -> str:
        return " > ".join(self.name_path)


@dataclass(slots=True, frozen=True)
class Attendee:
    name: Optional[str] = None
    email: Optional[str] = None
    response_status: Optional[str] = None
    organizer: bool = False


@dataclass(slots=True, frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    duration_seconds: float
    status: Optional[str] = None
    is_all_day: bool = False
    attendees: tuple[Attendee, ...] = ()
    calendar: Optional[str] = None
    location: Optional[str] = None
    source_stream: Optional[str] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration_seconds)


@dataclass(slots=True, frozen=True)
class AggregatedGroup:
    key: str
    total_duration_seconds: float
    percentage_of_total: float
    event_count: int
    first_seen: datetime
    last_seen: datetime
    representative: EnrichedActivity


@dataclass(slots=True, frozen=True)
class MeetingOverlap:
    meeting_id: str
    title: str
    scheduled_seconds: float
    overlap_seconds: float
    meeting_only_seconds: float


@dataclass(slots=True, frozen=True)
class CalendarSummary:
    focus_seconds: float
    meeting_seconds: float
    meeting_only_seconds: float
    overlap_seconds: float
    union_seconds: float
    meeting_count: int
    meetings: tuple[MeetingOverlap, ...] = ()


@dataclass(slots=True, frozen=True)
class Bucket:
    start: datetime
    end: datetime
    label: str
    active_seconds: float
    top_app: Optional[str] = None


@dataclass(slots=True, frozen=True)
class PeriodBreakdown:
    bucket_size: str
    timezone: str
    buckets: tuple[Bucket, ...]
    insights: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class EngineResult:
    """Everything one correlation pass reports back to the caller."""

    total_duration_seconds: float
    groups: tuple[AggregatedGroup, ...]
    time_range: TimeInterval
    calendar_summary: Optional[CalendarSummary] = None
    bucketed: Optional[PeriodBreakdown] = None
    streams: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
