"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from .categorizer import CategoryUsage
from .models import CalendarSummary, CategoryRule, EngineResult, PeriodBreakdown, RawActivityRecord


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, echo: Callable[[str], None] = print) -> None:
        self.echo = echo

    def print_result(self, result: EngineResult, group_label: str = "Group") -> None:
        start = result.time_range.start
        end = result.time_range.end
        self.echo(f"Activity from {start:%Y-%m-%d %H:%M} to {end:%Y-%m-%d %H:%M}")
        self.echo("-" * 60)
        self.echo(f"Total tracked: {format_duration(result.total_duration_seconds)}")

        if not result.groups:
            self.echo("No activity recorded for the selected range.")
        else:
            self.echo("")
            self.echo(f"Top {group_label.lower()}s:")
            for group in result.groups:
                self.echo(
                    f"  {group.key[:40]:<40} {format_duration(group.total_duration_seconds)}"
                    f" {group.percentage_of_total:6.2f}%  ({group.event_count} events)"
                )

        if result.calendar_summary is not None:
            self.echo("")
            self.print_calendar(result.calendar_summary)
        if result.bucketed is not None:
            self.echo("")
            self.print_breakdown(result.bucketed)

    def print_calendar(self, summary: CalendarSummary) -> None:
        self.echo(f"Meetings: {summary.meeting_count}")
        self.echo(f"  Focus time:        {format_duration(summary.focus_seconds)}")
        self.echo(f"  Scheduled:         {format_duration(summary.meeting_seconds)}")
        self.echo(f"  Overlapping focus: {format_duration(summary.overlap_seconds)}")
        self.echo(f"  Meeting only:      {format_duration(summary.meeting_only_seconds)}")
        self.echo(f"  Union:             {format_duration(summary.union_seconds)}")

    def print_breakdown(self, breakdown: PeriodBreakdown) -> None:
        self.echo(f"By {breakdown.bucket_size} ({breakdown.timezone}):")
        for bucket in breakdown.buckets:
            top = bucket.top_app or "-"
            self.echo(f"  {bucket.label:<18} {format_duration(bucket.active_seconds)}  {top}")
        for line in breakdown.insights:
            self.echo(f"* {line}")

    def print_categories(
        self, rules: Iterable[CategoryRule], usage: Optional[Iterable[CategoryUsage]] = None
    ) -> None:
        rules = list(rules)
        if not rules:
            self.echo("No categories configured.")
        for rule in rules:
            pattern = rule.regex or "(no rule)"
            self.echo(f"  {rule.label:<35} {pattern}")
        if usage:
            self.echo("")
            self.echo("Time per category:")
            for item in usage:
                self.echo(
                    f"  {item.category[:35]:<35} {format_duration(item.duration_seconds)}"
                    f" {item.percentage:6.2f}%"
                )

    def print_events(self, records: Iterable[RawActivityRecord]) -> None:
        count = 0
        for record in records:
            count += 1
            label = record.get_str("title") or record.get_str("url") or record.get_str("status") or ""
            app = record.get_str("app") or ""
            self.echo(
                f"  {record.start:%Y-%m-%d %H:%M:%S} {format_duration(record.duration_seconds)}"
                f"  {app[:20]:<20} {label[:60]}"
            )
        if count == 0:
            self.echo("No events matched.")


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
