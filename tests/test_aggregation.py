import pytest
from factories import activity, at

from activity_correlator.aggregation import aggregate, group_key, resolve_group_by
from activity_correlator.errors import ValidationError
from activity_correlator.models import BrowserPayload


def test_top_n_keeps_largest_and_breaks_ties_by_key():
    items = [
        activity(at(9), 500, app="Alpha"),
        activity(at(10), 300, app="Zulu"),
        activity(at(11), 300, app="Bravo"),
    ]

    groups = aggregate(items, ["app"], top_n=2)

    assert [(group.key, group.total_duration_seconds) for group in groups] == [
        ("Alpha", 500),
        ("Bravo", 300),
    ]


def test_percentages_are_relative_to_the_whole_pass():
    items = [
        activity(at(9), 600, app="Code"),
        activity(at(9, 10), 300, app="Slack"),
        activity(at(9, 15), 100, app="Slack"),
        activity(at(9, 20), 2, app="Finder"),
    ]

    groups = aggregate(items, "app", min_duration_seconds=5, total_seconds=1000)

    assert [(group.key, group.percentage_of_total, group.event_count) for group in groups] == [
        ("Code", 60.0, 1),
        ("Slack", 40.0, 2),
    ]


def test_group_records_first_and_last_seen_and_representative():
    first = activity(at(9), 60, app="Code", title="a.py")
    items = [first, activity(at(11), 60, app="Code", title="b.py"), activity(at(10), 60, app="Code")]

    [group] = aggregate(items, ["app"])

    assert group.first_seen == at(9)
    assert group.last_seen == at(11)
    assert group.representative is first


def test_composite_keys_render_missing_values():
    browsing = activity(
        at(9), 60, app="Firefox", browser=BrowserPayload(url="https://a.io", domain="a.io")
    )
    assert group_key(browsing, ("app", "domain")) == "Firefox | a.io"
    assert group_key(activity(at(9), 60, app="Code"), ("app", "domain")) == "Code | (none)"
    assert group_key(activity(at(9), 60, app="Code"), ("category",)) == "Uncategorized"


def test_system_apps_can_be_excluded():
    items = [activity(at(9), 60, app="Finder"), activity(at(9, 1), 60, app="Code")]
    groups = aggregate(items, ["app"], exclude_system_apps=True)
    assert [group.key for group in groups] == ["Code"]
    assert groups[0].percentage_of_total == 50.0


def test_zero_total_gives_zero_percentages():
    [group] = aggregate([activity(at(9), 0, app="Code")], ["app"])
    assert group.percentage_of_total == 0.0


@pytest.mark.parametrize("group_by", [[], ["app", "color"], ""])
def test_invalid_group_by_is_rejected(group_by):
    with pytest.raises(ValidationError):
        aggregate([], group_by)


def test_non_positive_top_n_is_rejected():
    with pytest.raises(ValidationError):
        aggregate([], ["app"], top_n=0)


def test_group_by_accepts_comma_separated_string_and_alias():
    assert resolve_group_by("application, category") == ("app", "category")
