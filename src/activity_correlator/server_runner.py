"""Helpers to launch the local JSON API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .config import EngineSettings
from .webapp import create_app


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    settings: Optional[EngineSettings] = None,
    categories_path: Optional[Path] = None,
    log_level: str = "info",
) -> None:
    """Start the FastAPI application under uvicorn until interrupted."""
    app = create_app(
        settings=settings or EngineSettings.from_env(),
        categories_path=categories_path,
    )

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)
