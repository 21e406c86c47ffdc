"""Interval arithmetic shared by the gate, correlator, overlay and buckets."""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from datetime import datetime, timedelta
from typing import Callable, Generic, Iterable, Iterator, Optional, Sequence, TypeVar

Span = tuple[datetime, datetime]

T = TypeVar("T")


def intersect(a: Span, b: Span) -> Optional[Span]:
    start = max(a[0], b[0])
    end = min(a[1], b[1])
    if end <= start:
        return None
    return start, end


def overlap_seconds(a: Span, b: Span) -> float:
    span = intersect(a, b)
    if span is None:
        return 0.0
    return (span[1] - span[0]).total_seconds()


def merge_spans(spans: Iterable[Span]) -> list[Span]:
    """Collapse overlapping or touching spans into a sorted disjoint list."""
    ordered = sorted(span for span in spans if span[1] > span[0])
    merged: list[Span] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
            continue
        merged.append((start, end))
    return merged


def total_seconds(spans: Iterable[Span]) -> float:
    return sum((end - start).total_seconds() for start, end in spans if end > start)


def clip_to_spans(
    span: Span, disjoint: Sequence[Span], ends: Optional[Sequence[datetime]] = None
) -> list[Span]:
    """Return the parts of ``span`` covered by the sorted disjoint spans.

    ``ends`` may carry the precomputed end instants of ``disjoint`` for repeated calls.
    """
    if ends is None:
        ends = [end for _, end in disjoint]
    pieces: list[Span] = []
    index = bisect_right(ends, span[0])
    for other in disjoint[index:]:
        if other[0] >= span[1]:
            break
        piece = intersect(span, other)
        if piece is not None:
            pieces.append(piece)
    return pieces


def subtract_spans(span: Span, disjoint: Sequence[Span]) -> list[Span]:
    """Return the parts of ``span`` not covered by the sorted disjoint spans."""
    gaps: list[Span] = []
    cursor = span[0]
    for start, end in disjoint:
        if end <= cursor:
            continue
        if start >= span[1]:
            break
        if start > cursor:
            gaps.append((cursor, min(start, span[1])))
        cursor = max(cursor, end)
        if cursor >= span[1]:
            break
    if cursor < span[1]:
        gaps.append((cursor, span[1]))
    return gaps


class IntervalIndex(Generic[T]):
    """Sorted lookup of items overlapping a span.

    Items are ordered by start; a lookup walks back from the first item starting
    after the query end and stops once no item can reach the query start, using
    the longest item duration as the bound.
    """

    def __init__(self, items: Iterable[T], span_of: Callable[[T], Span]) -> None:
        entries = sorted(
            ((span_of(item), position, item) for position, item in enumerate(items)),
            key=lambda entry: (entry[0][0], entry[1]),
        )
        self._spans = [span for span, _, _ in entries]
        self._items = [item for _, _, item in entries]
        self._starts = [span[0] for span in self._spans]
        self._max_length = max(
            (end - start for start, end in self._spans), default=timedelta(0)
        )

    def __len__(self) -> int:
        return len(self._items)

    def overlapping(self, span: Span) -> Iterator[tuple[T, Span]]:
        """Yield ``(item, item_span)`` for every item intersecting ``span``, by start."""
        upper = bisect_left(self._starts, span[1])
        lower = bisect_left(self._starts, span[0] - self._max_length)
        for position in range(lower, upper):
            item_span = self._spans[position]
            if intersect(item_span, span) is not None:
                yield self._items[position], item_span
