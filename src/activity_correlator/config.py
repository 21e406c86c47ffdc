"""Configuration models and helpers for the activity engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from .errors import ValidationError
from .normalization import SYSTEM_APP_NAMES

DEFAULT_SERVER_URL = "http://localhost:5600"

SERVER_URL_ENV = "ACTIVITY_SERVER_URL"
TIMEOUT_ENV = "ACTIVITY_TIMEOUT_SECONDS"
CACHE_TTL_ENV = "ACTIVITY_CACHE_TTL_SECONDS"
TIMEZONE_ENV = "ACTIVITY_TIMEZONE"


@dataclass(slots=True)
class EngineSettings:
    """Runtime configuration for the correlation engine."""

    server_url: str = DEFAULT_SERVER_URL
    request_timeout: timedelta = timedelta(seconds=30)
    cache_ttl: timedelta = timedelta(minutes=5)
    min_duration: timedelta = timedelta(seconds=5)
    top_n: int = 10
    timezone: str = "UTC"
    strict_app_matching: bool = True
    system_apps: frozenset[str] = SYSTEM_APP_NAMES

    @classmethod
    def from_values(
        cls,
        server_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        cache_ttl_seconds: Optional[float] = None,
        min_duration_seconds: Optional[float] = None,
        top_n: Optional[int] = None,
        timezone: Optional[str] = None,
        strict_app_matching: Optional[bool] = None,
    ) -> "EngineSettings":
        defaults = cls()
        timeout = defaults.request_timeout.total_seconds() if timeout_seconds is None else timeout_seconds
        ttl = defaults.cache_ttl.total_seconds() if cache_ttl_seconds is None else cache_ttl_seconds
        min_duration = (
            defaults.min_duration.total_seconds()
            if min_duration_seconds is None
            else min_duration_seconds
        )
        if timeout <= 0:
            raise ValidationError("Request timeout must be positive")
        if ttl < 0 or min_duration < 0:
            raise ValidationError("Cache TTL and minimum duration cannot be negative")
        return cls(
            server_url=(server_url or defaults.server_url).rstrip("/"),
            request_timeout=timedelta(seconds=timeout),
            cache_ttl=timedelta(seconds=ttl),
            min_duration=timedelta(seconds=min_duration),
            top_n=defaults.top_n if top_n is None else top_n,
            timezone=timezone or defaults.timezone,
            strict_app_matching=(
                defaults.strict_app_matching if strict_app_matching is None else strict_app_matching
            ),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "EngineSettings":
        """Build settings from ``ACTIVITY_*`` variables; keyword overrides win."""
        environ = os.environ if environ is None else environ
        values = {
            "server_url": environ.get(SERVER_URL_ENV),
            "timeout_seconds": _float(environ, TIMEOUT_ENV),
            "cache_ttl_seconds": _float(environ, CACHE_TTL_ENV),
            "timezone": environ.get(TIMEZONE_ENV),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.from_values(**values)


def _float(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from exc
