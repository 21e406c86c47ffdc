"""HTTP client for an ActivityWatch-compatible event store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import httpx

from .cache import TtlCache
from .errors import UpstreamError, UpstreamTimeoutError, UpstreamUnavailableError
from .models import RawActivityRecord
from .query_builder import QueryRequest, StreamKind
from .timeutil import parse_timestamp

logger = logging.getLogger(__name__)

API_PREFIX = "/api/0"

# Exact event-store types first; the substring is a fallback for third-party watchers.
_KIND_TYPES: tuple[tuple[StreamKind, str, str], ...] = (
    (StreamKind.WINDOW, "currentwindow", "window"),
    (StreamKind.BROWSER, "web.tab.current", "web"),
    (StreamKind.EDITOR, "app.editor.activity", "editor"),
    (StreamKind.AFK, "afkstatus", "afk"),
    (StreamKind.CALENDAR, "calendar", "calendar"),
)


@dataclass(slots=True, frozen=True)
class StreamInfo:
    id: str
    type: str
    client: Optional[str] = None
    hostname: Optional[str] = None
    created: Optional[str] = None

    @property
    def kind(self) -> Optional[StreamKind]:
        return classify_stream(self)


def classify_stream(stream: StreamInfo) -> Optional[StreamKind]:
    stream_type = (stream.type or "").lower()
    for kind, exact, _ in _KIND_TYPES:
        if stream_type == exact:
            return kind
    for kind, _, fragment in _KIND_TYPES:
        if fragment in stream_type:
            return kind
    # Calendar importers often publish a generic type under a descriptive id.
    stream_id = stream.id.lower()
    if "ical" in stream_id or "calendar" in stream_id:
        return StreamKind.CALENDAR
    return None


def record_from_event(event: Mapping[str, Any]) -> Optional[RawActivityRecord]:
    """Convert one ``{id, timestamp, duration, data}`` event; ``None`` if unusable."""
    start = parse_timestamp(event.get("timestamp"))
    if start is None:
        return None
    try:
        duration = float(event.get("duration") or 0.0)
    except (TypeError, ValueError):
        return None
    if duration < 0:
        return None
    data = event.get("data")
    raw_id = event.get("id")
    return RawActivityRecord(
        start=start,
        duration_seconds=duration,
        fields=dict(data) if isinstance(data, Mapping) else {},
        id=str(raw_id) if raw_id is not None else None,
    )


class ActivityWatchStore:
    """Reads streams, runs query programs and fetches settings over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url + API_PREFIX,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ActivityWatchStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        stream_id: Optional[str] = None,
        json: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"Event store timed out on {path}", stream_id) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"Event store unreachable at {self.base_url}: {exc}", stream_id
            ) from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise UpstreamUnavailableError(
                f"Event store answered {response.status_code} on {path}: {response.text[:200]}",
                stream_id,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"Event store sent invalid JSON on {path}", stream_id) from exc

    async def server_info(self) -> dict[str, Any]:
        payload = await self._request("GET", "/info")
        return payload if isinstance(payload, dict) else {}

    async def list_streams(self) -> list[StreamInfo]:
        payload = await self._request("GET", "/buckets/")
        if not isinstance(payload, Mapping):
            raise UpstreamError("Event store returned an unexpected stream listing")
        streams = [
            StreamInfo(
                id=str(info.get("id") or key),
                type=str(info.get("type") or ""),
                client=info.get("client"),
                hostname=info.get("hostname"),
                created=info.get("created"),
            )
            for key, info in payload.items()
            if isinstance(info, Mapping)
        ]
        streams.sort(key=lambda stream: stream.id)
        return streams

    async def query(self, request: QueryRequest) -> list[RawActivityRecord]:
        stream_id = request.stream_ids[0] if request.stream_ids else None
        payload = await self._request(
            "POST",
            "/query/",
            stream_id=stream_id,
            json={"timeperiods": request.timeperiods, "query": list(request.program)},
        )
        if not isinstance(payload, list):
            raise UpstreamError("Event store returned an unexpected query result", stream_id)
        # One result list per time period; only one period is ever requested.
        events = payload[0] if payload and isinstance(payload[0], list) else []
        records: list[RawActivityRecord] = []
        skipped = 0
        for event in events:
            record = record_from_event(event) if isinstance(event, Mapping) else None
            if record is None:
                skipped += 1
                continue
            if record.duration_seconds < request.min_duration_seconds:
                continue
            records.append(record)
        if skipped:
            logger.warning("Skipped %d malformed events from %s", skipped, stream_id)
        logger.debug(
            "Query over %s returned %d records", ", ".join(request.stream_ids), len(records)
        )
        return records

    async def get_setting(self, key: str) -> Any:
        return await self._request("GET", f"/settings/{key}", allow_missing=True)


class StreamCatalog:
    """Stream discovery grouped by kind, cached between requests."""

    def __init__(self, store: Any, cache: TtlCache[list[StreamInfo]]) -> None:
        self.store = store
        self.cache = cache

    async def streams(self) -> list[StreamInfo]:
        return await self.cache.get(self.store.list_streams)

    async def by_kind(self) -> dict[StreamKind, list[str]]:
        return group_by_kind(await self.streams())

    def invalidate(self) -> None:
        self.cache.invalidate()


def group_by_kind(streams: Iterable[StreamInfo]) -> dict[StreamKind, list[str]]:
    grouped: dict[StreamKind, list[str]] = {}
    for stream in streams:
        kind = stream.kind
        if kind is not None:
            grouped.setdefault(kind, []).append(stream.id)
    return grouped
