"""Calendar events and their reconciliation with focus time.

Meetings and focus activity describe the same wall-clock time from two
angles. The overlay counts each second once: time where focus and a meeting
coincide stays with the focus activity (annotated with the meeting), and only
meeting time without any focus becomes a synthesized calendar-only record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from .intervals import (
    IntervalIndex,
    Span,
    clip_to_spans,
    intersect,
    merge_spans,
    overlap_seconds,
    subtract_spans,
    total_seconds,
)
from .models import (
    Attendee,
    CalendarAnnotation,
    CalendarEvent,
    CalendarSummary,
    EnrichedActivity,
    MeetingOverlap,
    RawActivityRecord,
)
from .timeutil import parse_timestamp

logger = logging.getLogger(__name__)

ALL_DAY_SECONDS = 86400
DEFAULT_CALENDAR_LABEL = "Calendar"


def normalize_event(record: RawActivityRecord, stream_id: str) -> Optional[CalendarEvent]:
    """Build a ``CalendarEvent`` from a calendar-import record.

    Explicit start/end fields win over the record's own interval. Returns
    ``None`` for records that are not meetings (no title and no duration).
    """
    data = record.fields
    raw_title = data.get("summary") or data.get("title")
    title = str(raw_title or "Untitled event")
    all_day = bool(data.get("all_day", data.get("allDay", False)))

    start = _event_time(data.get("start", data.get("begin"))) or record.start
    end = _event_time(data.get("end", data.get("finish")))

    if end is not None and end > start:
        duration = (end - start).total_seconds()
    elif record.duration_seconds > 0:
        duration = record.duration_seconds
    elif all_day:
        duration = float(ALL_DAY_SECONDS)
    else:
        duration = 0.0
    if not raw_title and duration <= 0:
        logger.warning("Skipping empty calendar record %s in %s", record.id, stream_id)
        return None

    uid = data.get("uid") or data.get("id") or record.id
    if uid is None:
        uid = f"{start.isoformat()}:{title}"

    return CalendarEvent(
        id=f"{stream_id}:{uid}",
        title=title,
        start=start,
        duration_seconds=duration,
        status=str(data["status"]) if data.get("status") else None,
        is_all_day=all_day,
        attendees=tuple(_attendees(data.get("attendees"))),
        calendar=str(data["calendar"]) if data.get("calendar") else None,
        location=str(data["location"]) if data.get("location") else None,
        source_stream=stream_id,
    )


def _event_time(value: Any) -> Optional[datetime]:
    if isinstance(value, dict):
        value = value.get("dateTime") or value.get("date")
    return parse_timestamp(value)


def _attendees(raw: Any) -> Iterable[Attendee]:
    if not isinstance(raw, list):
        return
    for attendee in raw:
        if not isinstance(attendee, dict):
            continue
        yield Attendee(
            name=attendee.get("name") or attendee.get("displayName"),
            email=attendee.get("email") or attendee.get("address"),
            response_status=attendee.get("responseStatus") or attendee.get("status"),
            organizer=bool(attendee.get("organizer", False)),
        )


def filter_events(
    events: Iterable[CalendarEvent],
    *,
    include_all_day: bool = True,
    include_cancelled: bool = False,
    summary_query: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[CalendarEvent]:
    """Drop unwanted meetings and return the rest ordered by start."""
    query = summary_query.lower() if summary_query else None
    kept: list[CalendarEvent] = []
    for event in events:
        if not include_all_day and event.is_all_day:
            continue
        if not include_cancelled and (event.status or "").lower() == "cancelled":
            continue
        if query and not _matches(event, query):
            continue
        kept.append(event)
    kept.sort(key=lambda event: (event.start, event.id))
    return kept[:limit] if limit is not None else kept


def _matches(event: CalendarEvent, query: str) -> bool:
    haystacks = (event.title, event.location, event.calendar)
    return any(query in text.lower() for text in haystacks if text)


@dataclass(slots=True)
class OverlayResult:
    activities: list[EnrichedActivity]
    calendar_only: list[EnrichedActivity]
    summary: CalendarSummary

    @property
    def combined(self) -> list[EnrichedActivity]:
        return sorted(self.activities + self.calendar_only, key=lambda item: item.start)


def overlay(
    activities: Sequence[EnrichedActivity],
    meetings: Sequence[CalendarEvent],
    *,
    window: Optional[Span] = None,
) -> OverlayResult:
    """Annotate focus activities with meetings and synthesize meeting-only time.

    Meetings are first clipped to ``window`` when given, so only time inside
    the requested range is accounted. For each meeting the overlap is the part
    covered by focus activity. Every remaining gap becomes its own calendar-only
    record, excluding any part already claimed by an earlier meeting, so
    concurrent meetings without focus are not counted twice.
    """
    focus = [activity for activity in activities if not activity.calendar_only]
    focus_spans = merge_spans((activity.start, activity.end) for activity in focus)
    focus_ends = [end for _, end in focus_spans]
    index: IntervalIndex[EnrichedActivity] = IntervalIndex(
        focus, lambda activity: (activity.start, activity.end)
    )

    claimed: list[Span] = []
    synthesized: list[EnrichedActivity] = []
    details: list[MeetingOverlap] = []
    meeting_seconds = 0.0

    for meeting in sorted(meetings, key=lambda event: (event.start, event.id)):
        meeting_span: Optional[Span] = (meeting.start, meeting.end)
        if window is not None:
            meeting_span = intersect(meeting_span, window)
        if meeting_span is None or meeting.duration_seconds <= 0:
            details.append(MeetingOverlap(meeting.id, meeting.title, 0.0, 0.0, 0.0))
            continue
        scheduled = (meeting_span[1] - meeting_span[0]).total_seconds()
        meeting_seconds += scheduled

        for activity, span in index.overlapping(meeting_span):
            activity.calendar.append(
                CalendarAnnotation(
                    meeting_id=meeting.id,
                    title=meeting.title,
                    overlap_seconds=overlap_seconds(meeting_span, span),
                )
            )

        overlap = total_seconds(clip_to_spans(meeting_span, focus_spans, focus_ends))
        gaps = subtract_spans(meeting_span, merge_spans(focus_spans + claimed))
        for gap_start, gap_end in gaps:
            synthesized.append(
                EnrichedActivity(
                    start=gap_start,
                    duration_seconds=(gap_end - gap_start).total_seconds(),
                    app=meeting.calendar or meeting.source_stream or DEFAULT_CALENDAR_LABEL,
                    title=meeting.title,
                    calendar=[CalendarAnnotation(meeting.id, meeting.title, 0.0)],
                    calendar_only=True,
                )
            )
        if gaps:
            claimed = merge_spans(claimed + gaps)

        details.append(
            MeetingOverlap(
                meeting_id=meeting.id,
                title=meeting.title,
                scheduled_seconds=scheduled,
                overlap_seconds=overlap,
                meeting_only_seconds=total_seconds(gaps),
            )
        )

    focus_seconds = sum(activity.duration_seconds for activity in focus)
    meeting_only_seconds = sum(activity.duration_seconds for activity in synthesized)
    summary = CalendarSummary(
        focus_seconds=focus_seconds,
        meeting_seconds=meeting_seconds,
        meeting_only_seconds=meeting_only_seconds,
        overlap_seconds=sum(detail.overlap_seconds for detail in details),
        union_seconds=focus_seconds + meeting_only_seconds,
        meeting_count=len(meetings),
        meetings=tuple(details),
    )
    logger.debug(
        "Calendar overlay: %d meetings, %.0fs overlap, %.0fs meeting-only",
        summary.meeting_count,
        summary.overlap_seconds,
        summary.meeting_only_seconds,
    )
    return OverlayResult(activities=list(activities), calendar_only=synthesized, summary=summary)
