"""Canonical events: window focus intervals enriched with browser and editor data.

The window stream defines when time was spent. Browser and editor streams only
describe what that time was spent on, so they are attached as metadata to the
window interval they overlap and never add time of their own. When an
enrichment interval covers only part of a window interval, its payload still
describes the whole window interval.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Mapping, Optional, Sequence

from .intervals import IntervalIndex, overlap_seconds
from .models import (
    BrowserPayload,
    EditorPayload,
    EnrichedActivity,
    GitInfo,
    RawActivityRecord,
)
from .normalization import extract_domain, normalize_app_name, normalize_window_title

logger = logging.getLogger(__name__)

BROWSER = "browser"
EDITOR = "editor"

Payload = BrowserPayload | EditorPayload


def browser_payload(record: RawActivityRecord) -> Optional[BrowserPayload]:
    url = record.get_str("url")
    if not url:
        return None
    tab_count = record.fields.get("tabCount", record.fields.get("tab_count"))
    return BrowserPayload(
        url=url,
        domain=extract_domain(url) or url,
        title=record.get_str("title"),
        audible=bool(record.fields.get("audible", False)),
        incognito=bool(record.fields.get("incognito", False)),
        tab_count=int(tab_count) if isinstance(tab_count, (int, float)) else None,
    )


def editor_payload(record: RawActivityRecord) -> Optional[EditorPayload]:
    path = record.get_str("file")
    if not path:
        return None
    branch = record.get_str("branch")
    git = (
        GitInfo(
            branch=branch,
            commit=record.get_str("commit"),
            repository=record.get_str("repository"),
        )
        if branch
        else None
    )
    return EditorPayload(
        file=path,
        project=record.get_str("project"),
        language=record.get_str("language"),
        git=git,
    )


PAYLOAD_EXTRACTORS: dict[str, Callable[[RawActivityRecord], Optional[Payload]]] = {
    BROWSER: browser_payload,
    EDITOR: editor_payload,
}


class _EnrichmentSource:
    """One enrichment stream prepared for overlap lookups."""

    def __init__(
        self,
        kind: str,
        records: Sequence[RawActivityRecord],
        accepts: Optional[Callable[[str], bool]],
    ) -> None:
        extract = PAYLOAD_EXTRACTORS[kind]
        candidates: list[tuple[RawActivityRecord, Payload]] = []
        skipped = 0
        for record in records:
            payload = extract(record)
            if payload is None:
                skipped += 1
                continue
            candidates.append((record, payload))
        if skipped:
            logger.debug("Ignored %d %s records without a payload", skipped, kind)
        self.kind = kind
        self.accepts = accepts
        self.index: IntervalIndex[tuple[RawActivityRecord, Payload]] = IntervalIndex(
            candidates, lambda candidate: (candidate[0].start, candidate[0].end)
        )

    def applies_to(self, app: str) -> bool:
        return self.accepts is None or self.accepts(app)

    def best_payload(self, start: datetime, end: datetime) -> Optional[Payload]:
        """Payload with the largest overlap; the earliest start wins a tie."""
        best: Optional[Payload] = None
        best_key: Optional[tuple[float, datetime]] = None
        for (record, payload), span in self.index.overlapping((start, end)):
            overlap = overlap_seconds((start, end), span)
            # Larger overlap first, then earlier start.
            key = (-overlap, record.start)
            if best_key is None or key < best_key:
                best, best_key = payload, key
        return best


def correlate(
    base: Sequence[RawActivityRecord],
    enrichments: Optional[Mapping[str, Sequence[RawActivityRecord]]] = None,
    *,
    app_filters: Optional[Mapping[str, Callable[[str], bool]]] = None,
) -> list[EnrichedActivity]:
    """Build one ``EnrichedActivity`` per base window interval.

    ``enrichments`` maps ``"browser"``/``"editor"`` to their (already gated)
    records. ``app_filters`` optionally maps a kind to a predicate over app names
    deciding which windows may receive that kind of payload.
    """
    sources: list[_EnrichmentSource] = []
    for kind, records in (enrichments or {}).items():
        if kind not in PAYLOAD_EXTRACTORS:
            raise ValueError(f"Unknown enrichment kind: {kind}")
        accepts = app_filters.get(kind) if app_filters else None
        sources.append(_EnrichmentSource(kind, records, accepts))

    activities: list[EnrichedActivity] = []
    for record in sorted(base, key=lambda item: item.start):
        app = normalize_app_name(record.get_str("app"))
        raw_title = record.get_str("title")
        title = normalize_window_title(app, raw_title) or raw_title or ""
        activity = EnrichedActivity(
            start=record.start,
            duration_seconds=record.duration_seconds,
            app=app,
            title=title,
        )
        for source in sources:
            if not source.applies_to(app):
                continue
            payload = source.best_payload(record.start, record.end)
            if payload is None:
                continue
            if source.kind == BROWSER:
                activity.browser = payload  # type: ignore[assignment]
            else:
                activity.editor = payload  # type: ignore[assignment]
        activities.append(activity)

    logger.debug(
        "Correlated %d window records with %s",
        len(activities),
        ", ".join(f"{len(source.index)} {source.kind}" for source in sources) or "no enrichment",
    )
    return activities
