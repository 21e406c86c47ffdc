import pytest
from factories import at, raw

from activity_correlator.correlator import BROWSER, EDITOR, correlate
from activity_correlator.normalization import is_browser_app, is_editor_app


def test_browser_time_without_window_focus_is_not_counted():
    window = [raw(at(9), 3600, app="Google Chrome", title="Docs - Google Chrome")]
    browser = [
        raw(at(9), 1800, url="https://docs.python.org/3/", title="Docs"),
        raw(at(11), 1800, url="https://news.example.com/", title="News"),
    ]

    activities = correlate(window, {BROWSER: browser})

    assert len(activities) == 1
    assert sum(item.duration_seconds for item in activities) == 3600
    assert activities[0].browser.domain == "docs.python.org"
    assert activities[0].title == "Docs"


def test_output_duration_equals_window_duration():
    window = [
        raw(at(9), 600, app="Code"),
        raw(at(9, 10), 300, app="Google Chrome"),
        raw(at(9, 15), 900, app="Slack"),
    ]
    browser = [raw(at(9), 3600, url="https://example.com")]
    editor = [raw(at(8), 7200, file="/src/app.py", project="app")]

    activities = correlate(window, {BROWSER: browser, EDITOR: editor})

    assert sum(item.duration_seconds for item in activities) == 1800
    assert [item.app for item in activities] == ["Code", "Google Chrome", "Slack"]


def test_largest_overlap_wins_then_earliest_start():
    window = [raw(at(10), 600, app="Code")]
    editor = [
        raw(at(9, 58), 240, file="/a.py"),  # 2 minutes inside
        raw(at(10, 2), 300, file="/b.py"),  # 5 minutes inside
        raw(at(10, 7), 300, file="/c.py"),  # 3 minutes inside
    ]
    assert correlate(window, {EDITOR: editor})[0].editor.file == "/b.py"

    tied = [raw(at(10, 5), 300, file="/late.py"), raw(at(10), 300, file="/early.py")]
    assert correlate(window, {EDITOR: tied})[0].editor.file == "/early.py"


def test_partial_overlap_describes_whole_window_interval():
    window = [raw(at(10), 3600, app="Code")]
    editor = [raw(at(10, 50), 60, file="/notes.md", language="markdown", branch="main")]

    [item] = correlate(window, {EDITOR: editor})

    assert item.duration_seconds == 3600
    assert item.editor.language == "markdown"
    assert item.editor.git.branch == "main"


def test_app_filters_keep_payloads_on_matching_windows():
    window = [raw(at(9), 600, app="Slack"), raw(at(9, 10), 600, app="Firefox")]
    browser = [raw(at(9), 1200, url="https://example.org")]

    activities = correlate(
        window,
        {BROWSER: browser},
        app_filters={BROWSER: is_browser_app, EDITOR: is_editor_app},
    )

    assert activities[0].browser is None
    assert activities[1].browser.domain == "example.org"


def test_records_without_payload_are_ignored():
    window = [raw(at(9), 600, app="Code")]
    editor = [raw(at(9), 600, project="app")]
    assert correlate(window, {EDITOR: editor})[0].editor is None


def test_missing_app_becomes_unknown():
    [item] = correlate([raw(at(9), 60)])
    assert item.app == "Unknown"
    assert item.title == ""


def test_unknown_enrichment_kind_is_rejected():
    with pytest.raises(ValueError):
        correlate([raw(at(9), 60, app="Code")], {"terminal": []})
