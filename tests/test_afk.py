from factories import at, raw

from activity_correlator.afk import gate, present_spans


def test_gate_passes_through_without_afk_data():
    records = [raw(at(9), 600, app="Code")]
    assert gate(records, None) == records
    assert gate(records, []) == records


def test_gate_passes_through_when_no_status_is_recognised():
    records = [raw(at(9), 600, app="Code")]
    afk_records = [raw(at(9), 600, status="unknown")]
    assert present_spans(afk_records) is None
    assert gate(records, afk_records) == records


def test_gate_clips_and_splits_across_present_spans():
    records = [raw(at(9), 3600, app="Code", title="main.py")]
    afk_records = [
        raw(at(9), 900, status="not-afk"),
        raw(at(9, 15), 900, status="afk"),
        raw(at(9, 30), 1800, status="not-afk"),
    ]

    gated = gate(records, afk_records)

    assert [(record.start, record.duration_seconds) for record in gated] == [
        (at(9), 900),
        (at(9, 30), 1800),
    ]
    assert all(record.fields["title"] == "main.py" for record in gated)


def test_gate_drops_time_spent_away():
    records = [raw(at(12), 600, app="Code")]
    afk_records = [raw(at(12), 600, status="afk")]
    assert gate(records, afk_records) == []


def test_present_spans_merges_adjacent_heartbeats():
    afk_records = [
        raw(at(9), 60, status="not-afk"),
        raw(at(9, 1), 60, status="not-afk"),
    ]
    assert present_spans(afk_records) == [(at(9), at(9, 2))]
