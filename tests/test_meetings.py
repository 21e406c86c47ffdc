from datetime import date

from factories import activity, at, meeting, raw

from activity_correlator.meetings import ALL_DAY_SECONDS, filter_events, normalize_event, overlay


# ---- Overlay ----


def test_meeting_partly_covered_by_focus():
    focus = [activity(at(10), 900, app="Code")]
    result = overlay(focus, [meeting(at(10), 1800)])

    summary = result.summary
    assert summary.overlap_seconds == 900
    assert summary.meeting_only_seconds == 900
    assert len(result.calendar_only) == 1
    synthesized = result.calendar_only[0]
    assert synthesized.calendar_only is True
    assert synthesized.duration_seconds == 900
    assert synthesized.start == at(10, 15)
    assert synthesized.title == "Standup"
    assert focus[0].calendar[0].overlap_seconds == 900


def test_union_is_focus_plus_meeting_only():
    focus = [
        activity(at(9, 50), 1200, app="Code"),
        activity(at(10, 30), 600, app="Slack"),
    ]
    meetings = [meeting(at(10), 3600, "Planning"), meeting(at(13), 1800, "1:1")]

    result = overlay(focus, meetings)
    summary = result.summary

    assert summary.focus_seconds == 1800
    assert summary.union_seconds == summary.focus_seconds + summary.meeting_only_seconds
    assert summary.union_seconds == sum(item.duration_seconds for item in result.combined)
    for detail in summary.meetings:
        assert detail.overlap_seconds <= detail.scheduled_seconds
    planning = summary.meetings[0]
    assert planning.overlap_seconds == 1200  # 10:00-10:10 and 10:30-10:40
    assert planning.meeting_only_seconds == 2400


def test_overlap_never_exceeds_focus_duration():
    focus = [activity(at(10), 300, app="Code"), activity(at(10, 2), 300, app="Slack")]
    result = overlay(focus, [meeting(at(9), 7200)])
    assert result.summary.overlap_seconds == 420


def test_concurrent_meetings_are_not_double_counted():
    meetings = [meeting(at(14), 3600, "A"), meeting(at(14, 30), 3600, "B")]

    result = overlay([], meetings)

    assert result.summary.meeting_only_seconds == 5400
    assert result.summary.union_seconds == 5400
    assert [item.duration_seconds for item in result.calendar_only] == [3600, 1800]


def test_activity_overlapping_two_meetings_lists_both():
    focus = [activity(at(9), 3600, app="Zoom")]
    overlay(focus, [meeting(at(9), 900, "A"), meeting(at(9, 30), 900, "B")])
    assert [annotation.title for annotation in focus[0].calendar] == ["A", "B"]


def test_calendar_only_app_uses_calendar_name():
    result = overlay([], [meeting(at(9), 600, calendar="Work", source_stream="aw-import-ical")])
    assert result.calendar_only[0].app == "Work"


def test_fully_covered_meeting_synthesizes_nothing():
    result = overlay([activity(at(9), 3600)], [meeting(at(9, 15), 600)])
    assert result.calendar_only == []
    assert result.summary.meeting_only_seconds == 0


def test_focus_inside_a_meeting_leaves_one_record_per_gap():
    focus = [activity(at(9, 40), 2400, app="Code")]

    result = overlay(focus, [meeting(at(9, 30), 3600)])

    assert [(item.start, item.duration_seconds) for item in result.calendar_only] == [
        (at(9, 30), 600),
        (at(10, 20), 600),
    ]
    assert all(item.calendar[0].title == "Standup" for item in result.calendar_only)
    assert result.summary.meeting_only_seconds == 1200
    assert result.summary.meetings[0].meeting_only_seconds == 1200


def test_meetings_are_clipped_to_the_window():
    focus = [activity(at(9, 30), 600, app="Code")]
    meetings = [
        meeting(at(8), 7200, "Offsite"),
        meeting(at(0), ALL_DAY_SECONDS, "Holiday", is_all_day=True),
        meeting(at(11), 600, "Later"),
    ]

    result = overlay(focus, meetings, window=(at(9), at(10)))
    summary = result.summary

    assert summary.union_seconds == 3600
    assert summary.meeting_only_seconds == 3000
    assert summary.meeting_seconds == 7200
    assert all(at(9) <= item.start and item.end <= at(10) for item in result.calendar_only)
    later = next(detail for detail in summary.meetings if detail.title == "Later")
    assert later.scheduled_seconds == 0


# ---- Normalization and filtering ----


def test_normalize_event_reads_explicit_times_and_attendees():
    record = raw(
        at(8),
        0,
        uid="abc",
        summary="Design review",
        start={"dateTime": "2024-03-04T10:00:00Z"},
        end={"dateTime": "2024-03-04T11:00:00Z"},
        attendees=[{"displayName": "Sam", "email": "sam@example.com", "organizer": True}],
        location="Room 1",
    )

    event = normalize_event(record, "aw-import-ical")

    assert event.id == "aw-import-ical:abc"
    assert event.start == at(10)
    assert event.duration_seconds == 3600
    assert event.attendees[0].name == "Sam"
    assert event.attendees[0].organizer is True


def test_normalize_all_day_event_defaults_to_one_day():
    record = raw(at(0), 0, title="Holiday", all_day=True, start=date(2024, 3, 4).isoformat())
    event = normalize_event(record, "cal")
    assert event.is_all_day is True
    assert event.duration_seconds == ALL_DAY_SECONDS


def test_normalize_skips_empty_records():
    assert normalize_event(raw(at(9), 0), "cal") is None


def test_filter_events_applies_flags_and_limit():
    events = [
        meeting(at(12), 600, "Lunch"),
        meeting(at(0), 86400, "Holiday", is_all_day=True),
        meeting(at(9), 600, "Cancelled sync", status="cancelled"),
        meeting(at(10), 600, "Design review", location="Room 1"),
    ]

    assert [event.title for event in filter_events(events)] == ["Holiday", "Design review", "Lunch"]
    assert [event.title for event in filter_events(events, include_all_day=False, limit=1)] == [
        "Design review"
    ]
    assert [event.title for event in filter_events(events, include_cancelled=True)][1] == "Cancelled sync"
    assert [event.title for event in filter_events(events, summary_query="room")] == ["Design review"]
