"""Assign hierarchical categories to activities from ordered regex rules.

Rules are evaluated against one text blob per activity. The most specific
matching rule (the longest category path) wins; among equally specific
matches the first rule in the caller's order wins, so rule order matters.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from .models import CategoryRule, EnrichedActivity

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
CATEGORIES_ENV_VAR = "ACTIVITY_CATEGORIES"


@dataclass(slots=True, frozen=True)
class CompiledRule:
    pattern: re.Pattern[str]
    label: str
    depth: int


class CompiledRuleSet:
    """Ordered ``(pattern, label, depth)`` entries built once per request."""

    def __init__(self, rules: Iterable[CategoryRule]) -> None:
        compiled: list[CompiledRule] = []
        for rule in rules:
            if not rule.regex or not rule.name_path:
                continue
            try:
                pattern = re.compile(rule.regex, re.IGNORECASE)
            except re.error as exc:
                logger.warning("Skipping category %s: invalid regex (%s)", rule.label, exc)
                continue
            compiled.append(CompiledRule(pattern, rule.label, rule.priority_depth))
        self.entries: tuple[CompiledRule, ...] = tuple(compiled)

    def __len__(self) -> int:
        return len(self.entries)

    def match(self, text: str) -> str:
        best_label = UNCATEGORIZED
        best_depth = 0
        for entry in self.entries:
            # Strictly greater keeps the earliest rule on equal depth.
            if entry.depth > best_depth and entry.pattern.search(text):
                best_label, best_depth = entry.label, entry.depth
        return best_label


def activity_text(activity: EnrichedActivity) -> str:
    parts: list[Optional[str]] = [activity.app, activity.title]
    if activity.browser:
        parts.extend([activity.browser.url, activity.browser.domain])
    if activity.editor:
        parts.extend([activity.editor.file, activity.editor.project])
    return " ".join(part for part in parts if part)


def categorize(activity: EnrichedActivity, rules: CompiledRuleSet | Sequence[CategoryRule]) -> str:
    if not isinstance(rules, CompiledRuleSet):
        rules = CompiledRuleSet(rules)
    return rules.match(activity_text(activity))


def categorize_all(
    activities: Iterable[EnrichedActivity], rules: CompiledRuleSet | Sequence[CategoryRule]
) -> None:
    """Set ``category`` on every activity in place."""
    if not isinstance(rules, CompiledRuleSet):
        rules = CompiledRuleSet(rules)
    for activity in activities:
        activity.category = rules.match(activity_text(activity))


@dataclass(slots=True, frozen=True)
class CategoryUsage:
    category: str
    duration_seconds: float
    percentage: float
    event_count: int


def category_usage(activities: Iterable[EnrichedActivity]) -> list[CategoryUsage]:
    """Total time per category path, largest first."""
    durations: defaultdict[str, float] = defaultdict(float)
    counts: defaultdict[str, int] = defaultdict(int)
    for activity in activities:
        label = activity.category or UNCATEGORIZED
        durations[label] += activity.duration_seconds
        counts[label] += 1
    total = sum(durations.values())
    usage = [
        CategoryUsage(
            category=label,
            duration_seconds=seconds,
            percentage=round(seconds / total * 100, 2) if total > 0 else 0.0,
            event_count=counts[label],
        )
        for label, seconds in durations.items()
    ]
    usage.sort(key=lambda item: (-item.duration_seconds, item.category))
    return usage


def parse_rules(payload: Any) -> list[CategoryRule]:
    """Read rules from either supported JSON shape.

    The flat shape lists entries with ``name`` as a list of path segments; the
    nested shape gives ``name`` as a string and nests ``children``.
    """
    if not isinstance(payload, list):
        raise ValueError("Categories must be a list")
    rules: list[CategoryRule] = []
    for entry in payload:
        if not isinstance(entry, Mapping):
            raise ValueError(f"Category entries must be objects, got {type(entry).__name__}")
        if isinstance(entry.get("name"), list):
            rules.append(_flat_rule(entry, len(rules)))
        else:
            _walk_tree(entry, (), rules)
    return rules


def _rule_regex(entry: Mapping[str, Any]) -> Optional[str]:
    rule = entry.get("rule") or {}
    if rule.get("type") != "regex":
        return None
    regex = rule.get("regex")
    return str(regex) if regex else None


def _flat_rule(entry: Mapping[str, Any], position: int) -> CategoryRule:
    data = entry.get("data") or {}
    score = data.get("score")
    return CategoryRule(
        id=int(entry.get("id", position)),
        name_path=tuple(str(part) for part in entry["name"]),
        regex=_rule_regex(entry),
        color_hint=data.get("color"),
        score_hint=float(score) if isinstance(score, (int, float)) else None,
    )


def _walk_tree(
    entry: Mapping[str, Any], parent: tuple[str, ...], rules: list[CategoryRule]
) -> None:
    path = parent + (str(entry.get("name") or "Unnamed"),)
    data = entry.get("data") or {}
    rules.append(
        CategoryRule(
            id=len(rules),
            name_path=path,
            regex=_rule_regex(entry),
            color_hint=data.get("color"),
        )
    )
    for child in entry.get("children") or ():
        _walk_tree(child, path, rules)


class SettingsSource(Protocol):
    async def get_setting(self, key: str) -> Any: ...


async def load_rules(
    source: Optional[SettingsSource],
    *,
    fallback_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[CategoryRule, ...]:
    """Load rules from the event store, then the environment, then a file.

    Any source that fails is logged and the next one is tried; an empty tuple
    means nothing is configured and every activity ends up uncategorized.
    """
    environ = os.environ if environ is None else environ

    if source is not None:
        try:
            classes = await source.get_setting("classes")
        except Exception:
            logger.warning("Could not load categories from the event store", exc_info=True)
        else:
            if classes:
                try:
                    rules = parse_rules(classes)
                except (ValueError, KeyError, TypeError):
                    logger.warning("Event store categories are malformed", exc_info=True)
                else:
                    logger.info("Loaded %d categories from the event store", len(rules))
                    return tuple(rules)

    raw = environ.get(CATEGORIES_ENV_VAR)
    if raw:
        try:
            rules = parse_rules(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.error("Failed to parse %s", CATEGORIES_ENV_VAR, exc_info=True)
        else:
            logger.info("Loaded %d categories from %s", len(rules), CATEGORIES_ENV_VAR)
            return tuple(rules)

    if fallback_path is not None and fallback_path.exists():
        try:
            rules = parse_rules(json.loads(fallback_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError):
            logger.error("Failed to read categories from %s", fallback_path, exc_info=True)
        else:
            logger.info("Loaded %d categories from %s", len(rules), fallback_path)
            return tuple(rules)

    logger.info("No categories configured")
    return ()
