"""Command-line interface for the activity correlator."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer

from .config import EngineSettings
from .errors import ActivityEngineError
from .paths import get_categories_path
from .pipeline import ActivityEngine, ActivityRequest
from .query_builder import QueryFilters
from .reporting import SummaryPrinter
from .store import ActivityWatchStore
from .timeutil import PERIODS, parse_timestamp, resolve_period, resolve_timezone

app = typer.Typer(help="Correlate ActivityWatch streams into one accounting of your time.")

T = TypeVar("T")


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _settings(server_url: Optional[str], timezone: Optional[str]) -> EngineSettings:
    try:
        return EngineSettings.from_env(server_url=server_url, timezone=timezone)
    except ActivityEngineError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _run(settings: EngineSettings, action: Callable[[ActivityEngine], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh engine and close the connection afterwards."""

    async def _with_engine() -> T:
        async with ActivityWatchStore(
            settings.server_url, timeout=settings.request_timeout.total_seconds()
        ) as store:
            engine = ActivityEngine(store, settings, categories_path=get_categories_path())
            return await action(engine)

    try:
        return asyncio.run(_with_engine())
    except ActivityEngineError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _range(
    period: str, start: Optional[str], end: Optional[str], settings: EngineSettings
) -> tuple[datetime, datetime]:
    try:
        tz = resolve_timezone(settings.timezone)
        if start or end:
            return resolve_period(
                "custom",
                tz,
                custom_start=parse_timestamp(start),
                custom_end=parse_timestamp(end),
            )
        return resolve_period(period, tz)
    except ActivityEngineError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


_PERIOD_HELP = f"Named period: {', '.join(PERIODS[:-1])}."


@app.command()
def summary(
    period: str = typer.Option("today", "--period", "-p", help=_PERIOD_HELP),
    start: Optional[str] = typer.Option(None, "--start", help="ISO start of a custom range."),
    end: Optional[str] = typer.Option(None, "--end", help="ISO end of a custom range."),
    group_by: str = typer.Option(
        "app", "--group-by", "-g", help="Comma-separated fields: app, category, title, domain, project, language, file."
    ),
    top_n: Optional[int] = typer.Option(None, "--top", "-n", min=1, help="Number of groups to show."),
    min_duration: Optional[float] = typer.Option(
        None, "--min-duration", min=0.0, help="Ignore activities shorter than this many seconds."
    ),
    calendar: bool = typer.Option(False, "--calendar/--no-calendar", help="Overlay calendar meetings."),
    bucket: Optional[str] = typer.Option(None, "--bucket", help="Break down by hour, day or week."),
    exclude_system: bool = typer.Option(
        False, "--exclude-system/--include-system", help="Drop login windows, docks and similar."
    ),
    server_url: Optional[str] = typer.Option(None, "--server", help="Event store URL."),
    timezone: Optional[str] = typer.Option(None, "--timezone", "--tz", help="IANA timezone for ranges."),
) -> None:
    """Print where the time went over a period."""
    settings = _settings(server_url, timezone)
    range_start, range_end = _range(period, start, end, settings)
    request = ActivityRequest(
        start=range_start,
        end=range_end,
        group_by=tuple(part.strip() for part in group_by.split(",") if part.strip()),
        top_n=top_n,
        min_duration_seconds=min_duration,
        exclude_system_apps=exclude_system,
        include_calendar=calendar,
        bucket_size=bucket,
        timezone=settings.timezone,
    )
    result = _run(settings, lambda engine: engine.run(request))
    SummaryPrinter(typer.echo).print_result(result, group_label=group_by)


@app.command()
def categories(
    period: Optional[str] = typer.Option(
        None, "--period", "-p", help="Also show time per category over this period."
    ),
    server_url: Optional[str] = typer.Option(None, "--server", help="Event store URL."),
    timezone: Optional[str] = typer.Option(None, "--timezone", "--tz", help="IANA timezone for ranges."),
) -> None:
    """List configured categories, optionally with time spent in each."""
    settings = _settings(server_url, timezone)
    range_start = range_end = None
    if period:
        range_start, range_end = _range(period, None, None, settings)

    async def _collect(engine: ActivityEngine):
        rules = await engine.categories()
        usage = None
        if range_start is not None and range_end is not None:
            usage = await engine.category_usage(ActivityRequest(start=range_start, end=range_end))
        return rules, usage

    rules, usage = _run(settings, _collect)
    SummaryPrinter(typer.echo).print_categories(rules, usage)


@app.command()
def query(
    kind: str = typer.Argument("window", help="Stream kind: window, browser, editor, afk, calendar."),
    period: str = typer.Option("today", "--period", "-p", help=_PERIOD_HELP),
    start: Optional[str] = typer.Option(None, "--start", help="ISO start of a custom range."),
    end: Optional[str] = typer.Option(None, "--end", help="ISO end of a custom range."),
    apps: List[str] = typer.Option([], "--app", help="Only these apps (window streams)."),
    exclude_apps: List[str] = typer.Option([], "--exclude-app", help="Drop these apps (window streams)."),
    domains: List[str] = typer.Option([], "--domain", help="Only these domains (browser streams)."),
    titles: List[str] = typer.Option([], "--title", help="Title regex; repeat for alternatives."),
    min_duration: float = typer.Option(0.0, "--min-duration", min=0.0, help="Minimum event length in seconds."),
    limit: Optional[int] = typer.Option(50, "--limit", min=1, help="Maximum events to print."),
    server_url: Optional[str] = typer.Option(None, "--server", help="Event store URL."),
    timezone: Optional[str] = typer.Option(None, "--timezone", "--tz", help="IANA timezone for ranges."),
) -> None:
    """Print raw events of one stream kind, newest first."""
    settings = _settings(server_url, timezone)
    range_start, range_end = _range(period, start, end, settings)
    filters = QueryFilters(
        include_apps=tuple(apps),
        exclude_apps=tuple(exclude_apps),
        include_domains=tuple(domains),
        title_patterns=tuple(titles),
        min_duration_seconds=min_duration,
    )
    records = _run(
        settings,
        lambda engine: engine.query_events(
            range_start, range_end, kind, filters=filters, limit=limit
        ),
    )
    SummaryPrinter(typer.echo).print_events(records)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8766, "--port", min=1, max=65535, help="TCP port for the API."),
    categories_path: Optional[Path] = typer.Option(
        None, "--categories", help="Fallback categories JSON file."
    ),
    server_url: Optional[str] = typer.Option(None, "--server", help="Event store URL."),
    timezone: Optional[str] = typer.Option(None, "--timezone", "--tz", help="IANA timezone for ranges."),
) -> None:
    """Start the local JSON API."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        settings=_settings(server_url, timezone),
        categories_path=categories_path,
    )
