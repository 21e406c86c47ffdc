import pytest
from factories import STREAM_TYPES, FakeStore, at, raw, timeout

from activity_correlator.config import EngineSettings
from activity_correlator.errors import (
    InvalidRangeError,
    MissingStreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from activity_correlator.pipeline import ActivityEngine, ActivityRequest
from activity_correlator.query_builder import QueryFilters, StreamKind

CLASSES = [
    {"id": 0, "name": ["Work"], "rule": {"type": "regex", "regex": "Slack|Code"}},
    {"id": 1, "name": ["Work", "Coding"], "rule": {"type": "regex", "regex": "Code|github"}},
]


# ---- Helpers ----


def _records():
    return {
        StreamKind.WINDOW: [
            raw(at(9), 1800, app="Code", title="engine.py - app - Visual Studio Code"),
            raw(at(9, 30), 900, app="Google Chrome", title="Pull request - Google Chrome"),
            raw(at(9, 45), 900, app="Slack", title="general"),
            raw(at(10, 0), 2, app="Finder", title=""),
        ],
        StreamKind.BROWSER: [
            raw(at(9, 30), 900, url="https://github.com/org/app/pull/1", title="Pull request"),
        ],
        StreamKind.EDITOR: [raw(at(9), 1800, file="/src/engine.py", project="app", language="python")],
        StreamKind.AFK: [
            raw(at(9), 3600, status="not-afk"),
            raw(at(10), 3600, status="afk"),
        ],
        StreamKind.CALENDAR: [
            raw(at(9, 50), 0, uid="standup", summary="Standup", start="2024-03-04T09:50:00Z", end="2024-03-04T10:20:00Z"),
            raw(at(11), 1800, uid="x", summary="Cancelled", status="cancelled"),
        ],
    }


def _engine(store, **settings) -> ActivityEngine:
    return ActivityEngine(store, EngineSettings.from_values(min_duration_seconds=0, **settings))


# ---- Full pass ----


@pytest.mark.asyncio
async def test_full_pass_accounts_every_window_second_once():
    store = FakeStore(_records(), settings={"classes": CLASSES})
    engine = _engine(store)

    result = await engine.run(ActivityRequest(start=at(9), end=at(11), group_by=("app",)))

    # Finder's two seconds fall after the last present span ends at 10:00.
    assert result.total_duration_seconds == 3600
    assert [(group.key, group.total_duration_seconds) for group in result.groups] == [
        ("Code", 1800),
        ("Google Chrome", 900),
        ("Slack", 900),
    ]
    chrome = result.groups[1].representative
    assert chrome.browser.domain == "github.com"
    assert chrome.category == "Work > Coding"
    assert result.groups[0].representative.editor.project == "app"
    assert result.streams["window"] == ("aw-watcher-window_host",)
    assert result.calendar_summary is None


@pytest.mark.asyncio
async def test_calendar_overlay_and_buckets():
    store = FakeStore(_records(), settings={"classes": CLASSES})
    engine = _engine(store)

    result = await engine.run(
        ActivityRequest(
            start=at(9),
            end=at(11),
            group_by=("category",),
            include_calendar=True,
            bucket_size="hour",
        )
    )

    summary = result.calendar_summary
    assert summary.meeting_count == 1
    assert summary.overlap_seconds == 600
    assert summary.meeting_only_seconds == 1200
    assert summary.union_seconds == result.total_duration_seconds == 4800
    assert sum(bucket.active_seconds for bucket in result.bucketed.buckets) == 4800
    assert [bucket.label for bucket in result.bucketed.buckets] == [
        "2024-03-04 09:00",
        "2024-03-04 10:00",
    ]


@pytest.mark.asyncio
async def test_time_outside_the_range_is_not_counted():
    store = FakeStore(
        {
            StreamKind.WINDOW: [
                raw(at(8, 50), 1200, app="Code", title="main.py"),
                raw(at(9, 30), 600, app="Slack", title="general"),
            ],
            StreamKind.CALENDAR: [
                raw(at(8), 9000, uid="offsite", summary="Offsite"),
                raw(at(0), 0, uid="holiday", summary="Holiday", all_day=True),
            ],
        }
    )

    result = await _engine(store).run(
        ActivityRequest(
            start=at(9), end=at(10), include_calendar=True, bucket_size="hour"
        )
    )

    summary = result.calendar_summary
    assert summary.focus_seconds == 1200
    assert summary.meeting_only_seconds == 2400
    assert summary.union_seconds == result.total_duration_seconds == 3600
    assert [(bucket.label, bucket.active_seconds) for bucket in result.bucketed.buckets] == [
        ("2024-03-04 09:00", 3600)
    ]


@pytest.mark.asyncio
async def test_calendars_sharing_an_event_uid_stay_distinct():
    store = FakeStore(
        {
            "aw-import-ical_host": [raw(at(9), 600, uid="sync", summary="Sync")],
            "aw-import-ical_work": [raw(at(10), 600, uid="sync", summary="Sync")],
        },
        streams={**STREAM_TYPES, "aw-import-ical_work": "calendar"},
    )
    engine = _engine(store)

    events = await engine.calendar_events(at(9), at(11))
    result = await engine.run(ActivityRequest(start=at(9), end=at(11), include_calendar=True))

    assert [event.id for event in events] == ["aw-import-ical_host:sync", "aw-import-ical_work:sync"]
    assert sorted(group.key for group in result.groups) == ["aw-import-ical_host", "aw-import-ical_work"]
    assert result.streams["calendar"] == ("aw-import-ical_host", "aw-import-ical_work")


@pytest.mark.asyncio
async def test_enrichment_failure_degrades_gracefully():
    store = FakeStore(_records(), failures={StreamKind.BROWSER: timeout(StreamKind.BROWSER)})

    result = await _engine(store).run(ActivityRequest(start=at(9), end=at(11)))

    chrome = next(group for group in result.groups if group.key == "Google Chrome")
    assert chrome.representative.browser is None
    assert result.total_duration_seconds == 3600


@pytest.mark.asyncio
async def test_afk_failure_counts_all_window_time():
    store = FakeStore(_records(), failures={StreamKind.AFK: timeout(StreamKind.AFK)})
    result = await _engine(store).run(ActivityRequest(start=at(9), end=at(11)))
    assert result.total_duration_seconds == 3602


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [StreamKind.WINDOW, StreamKind.CALENDAR])
async def test_base_and_calendar_failures_propagate(kind):
    store = FakeStore(_records(), failures={kind: timeout(kind)})
    with pytest.raises(UpstreamTimeoutError) as excinfo:
        await _engine(store).run(ActivityRequest(start=at(9), end=at(11), include_calendar=True))
    assert excinfo.value.stream_id == f"{kind.value}-stream"


@pytest.mark.asyncio
async def test_missing_window_stream_lists_what_was_found():
    store = FakeStore(streams={"aw-watcher-afk_host": "afkstatus"})
    with pytest.raises(MissingStreamError) as excinfo:
        await _engine(store).run(ActivityRequest(start=at(9), end=at(11)))
    assert excinfo.value.kind == "window"
    assert excinfo.value.found == ["aw-watcher-afk_host"]


@pytest.mark.asyncio
async def test_calendar_requested_without_calendar_stream():
    store = FakeStore(_records(), streams={"aw-watcher-window_host": "currentwindow"})
    with pytest.raises(MissingStreamError):
        await _engine(store).run(ActivityRequest(start=at(9), end=at(11), include_calendar=True))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("request_kwargs", "error"),
    [
        ({"start": at(11), "end": at(9)}, InvalidRangeError),
        ({"group_by": ("colour",)}, ValidationError),
        ({"top_n": 0}, ValidationError),
        ({"bucket_size": "month"}, ValidationError),
        ({"timezone": "Nowhere/Special"}, ValidationError),
    ],
)
async def test_invalid_requests_fail_before_fetching(request_kwargs, error):
    store = FakeStore(_records())
    request = ActivityRequest(**{"start": at(9), "end": at(11), **request_kwargs})
    with pytest.raises(error):
        await _engine(store).run(request)
    assert store.queries == []
    assert store.list_calls == 0


@pytest.mark.asyncio
async def test_stream_listing_is_cached_until_invalidated():
    store = FakeStore(_records())
    engine = _engine(store)

    await engine.run(ActivityRequest(start=at(9), end=at(11)))
    await engine.run(ActivityRequest(start=at(9), end=at(11)))
    assert store.list_calls == 1

    engine.invalidate_caches()
    await engine.run(ActivityRequest(start=at(9), end=at(11)))
    assert store.list_calls == 2


@pytest.mark.asyncio
async def test_window_filters_reach_the_query():
    store = FakeStore(_records())
    await _engine(store).run(
        ActivityRequest(start=at(9), end=at(11), filters=QueryFilters(exclude_apps=("Slack",)))
    )
    window_query = next(query for query in store.queries if query.kind is StreamKind.WINDOW)
    assert 'events = exclude_keyvals(events, "app", ["Slack"]);' in window_query.program


# ---- Other entry points ----


@pytest.mark.asyncio
async def test_category_usage_over_a_range():
    store = FakeStore(_records(), settings={"classes": CLASSES})
    usage = await _engine(store).category_usage(ActivityRequest(start=at(9), end=at(11)))
    assert [(item.category, item.duration_seconds) for item in usage] == [
        ("Work > Coding", 2700),
        ("Work", 900),
    ]


@pytest.mark.asyncio
async def test_query_events_gates_on_afk_and_limits():
    store = FakeStore(_records())

    records = await _engine(store).query_events(at(9), at(11), "browser", limit=1)

    assert len(records) == 1
    [request] = store.queries
    assert "not_afk" in " ".join(request.program)
    assert "focused" in " ".join(request.program)
    assert request.stream_ids == (
        "aw-watcher-web-chrome_host",
        "aw-watcher-afk_host",
        "aw-watcher-window_host",
    )


@pytest.mark.asyncio
async def test_calendar_events_filters_cancelled():
    store = FakeStore(_records())
    events = await _engine(store).calendar_events(at(9), at(12))
    assert [event.title for event in events] == ["Standup"]
    assert events[0].id == "aw-import-ical_host:standup"


@pytest.mark.asyncio
async def test_status_reports_streams():
    payload = await _engine(FakeStore(_records())).status()
    assert payload["server"]["version"] == "v0.13.1"
    assert payload["streams"]["editor"] == ["aw-watcher-vscode_host"]
