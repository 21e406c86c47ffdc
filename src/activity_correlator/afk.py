"""Restrict activity intervals to the time the user was actually present."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Sequence

from .intervals import Span, clip_to_spans, merge_spans
from .models import RawActivityRecord
from .query_builder import AWAY_STATUS, PRESENT_STATUS

logger = logging.getLogger(__name__)


def present_spans(afk_records: Sequence[RawActivityRecord]) -> Optional[list[Span]]:
    """Merged spans tagged as present, or ``None`` if no record carries a known status."""
    recognised = False
    spans: list[Span] = []
    for record in afk_records:
        status = record.get_str("status")
        if status not in (PRESENT_STATUS, AWAY_STATUS):
            continue
        recognised = True
        if status == PRESENT_STATUS:
            spans.append((record.start, record.end))
    if not recognised:
        return None
    return merge_spans(spans)


def gate(
    records: Sequence[RawActivityRecord],
    afk_records: Optional[Sequence[RawActivityRecord]],
) -> list[RawActivityRecord]:
    """Clip ``records`` to present time.

    Without usable away-status data every interval counts and ``records`` is
    returned as is. A record crossing several present spans is split into one
    record per covered piece, each keeping the original fields.
    """
    if not afk_records:
        return list(records)
    spans = present_spans(afk_records)
    if spans is None:
        logger.warning("Away-status stream has no recognised statuses; not gating.")
        return list(records)

    gated = clip_records(records, spans)
    logger.debug("AFK gate kept %d of %d records", len(gated), len(records))
    return gated


def clip_records(
    records: Sequence[RawActivityRecord], spans: Sequence[Span]
) -> list[RawActivityRecord]:
    """Keep the parts of ``records`` inside the sorted disjoint ``spans``.

    A record crossing several spans becomes one record per covered piece,
    each keeping the original fields.
    """
    ends = [end for _, end in spans]
    clipped: list[RawActivityRecord] = []
    for record in records:
        for start, end in clip_to_spans((record.start, record.end), spans, ends):
            clipped.append(
                replace(record, start=start, duration_seconds=(end - start).total_seconds())
            )
    return clipped
