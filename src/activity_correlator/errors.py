"""Error taxonomy for the correlation engine.

Range and validation problems are rejected before anything is fetched. Upstream
failures carry the stream that was being read so callers can retry or report.
"""

from __future__ import annotations

from typing import Iterable, Optional


class ActivityEngineError(Exception):
    """Base error for the engine."""


class InvalidRangeError(ActivityEngineError):
    """The requested time range is empty or inverted."""


class ValidationError(ActivityEngineError):
    """A request parameter is not acceptable (grouping key, top_n, timezone...)."""


class MissingStreamError(ActivityEngineError):
    """A required stream could not be located in the event store."""

    def __init__(self, kind: str, found: Iterable[str] = ()) -> None:
        self.kind = kind
        self.found = sorted(found)
        available = ", ".join(self.found) if self.found else "none"
        super().__init__(f"No {kind} stream available (found streams: {available})")


class UpstreamError(ActivityEngineError):
    """The event store could not serve a request."""

    def __init__(self, message: str, stream_id: Optional[str] = None) -> None:
        self.stream_id = stream_id
        if stream_id:
            message = f"{message} (stream: {stream_id})"
        super().__init__(message)


class UpstreamTimeoutError(UpstreamError):
    """The event store did not answer in time."""


class UpstreamUnavailableError(UpstreamError):
    """The event store refused the request or could not be reached."""
