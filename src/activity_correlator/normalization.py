"""Utilities to normalize application names, window titles and domains."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge",),
    "microsoft edge": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "google chrome": (" - Google Chrome",),
    "google-chrome": (" - Google Chrome",),
    "chromium": (" - Chromium",),
    "firefox.exe": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "firefox": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "brave.exe": (" - Brave",),
    "brave browser": (" - Brave",),
    "opera.exe": (" - Opera",),
    "vivaldi.exe": (" - Vivaldi",),
}

# App names as reported by window watchers on each platform.
BROWSER_APPS: tuple[str, ...] = (
    "Google Chrome",
    "chrome.exe",
    "Google-chrome",
    "chrome",
    "Chromium",
    "chromium-browser",
    "Firefox",
    "firefox.exe",
    "Firefox Developer Edition",
    "firefoxdeveloperedition",
    "Firefox-esr",
    "Nightly",
    "org.mozilla.firefox",
    "Opera",
    "opera.exe",
    "Brave",
    "Brave Browser",
    "brave.exe",
    "brave-browser",
    "Microsoft Edge",
    "msedge.exe",
    "microsoft-edge",
    "Vivaldi",
    "vivaldi.exe",
    "Vivaldi-stable",
    "Safari",
    "Arc",
)

EDITOR_APPS: tuple[str, ...] = (
    "Code",
    "code.exe",
    "Visual Studio Code",
    "VSCode",
    "Code - Insiders",
    "Cursor",
    "cursor.exe",
    "vim",
    "nvim",
    "gvim",
    "neovim",
    "emacs",
    "sublime_text",
    "Sublime Text",
    "subl",
    "atom",
    "idea",
    "IntelliJ IDEA",
    "jetbrains-idea",
    "pycharm",
    "PyCharm",
    "jetbrains-pycharm",
    "webstorm",
    "WebStorm",
    "goland",
    "GoLand",
    "rider",
    "Rider",
    "zed",
    "Zed",
)

BROWSER_APP_NAMES: frozenset[str] = frozenset(name.lower() for name in BROWSER_APPS)
EDITOR_APP_NAMES: frozenset[str] = frozenset(name.lower() for name in EDITOR_APPS)

SYSTEM_APP_NAMES: frozenset[str] = frozenset(
    (
        "loginwindow",
        "Dock",
        "Finder",
        "SystemUIServer",
        "Window Server",
        "WindowServer",
        "Control Center",
        "Notification Center",
        "Spotlight",
        "screensaver",
        "ScreenSaverEngine",
        "lockscreen",
        "LockScreen",
        "gnome-shell",
        "plasmashell",
        "explorer.exe",
        "dwm.exe",
        "ApplicationFrameHost.exe",
        "LockApp.exe",
    )
)

UNKNOWN_APP = "Unknown"


def normalize_app_name(app: Optional[str]) -> str:
    if not app:
        return UNKNOWN_APP
    cleaned = app.strip()
    return cleaned or UNKNOWN_APP


def normalize_window_title(app: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not app:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(app.strip().lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")


_BARE_HOST_PATTERN = re.compile(r"^(?:[a-z][a-z0-9+.-]*://)?([^/?#:]+)", re.IGNORECASE)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Return the lowercase host of ``url`` without a leading ``www.``."""
    if not url:
        return None
    host = urlsplit(url).hostname
    if not host:
        match = _BARE_HOST_PATTERN.match(url.strip())
        host = match.group(1) if match else None
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def is_system_app(app: Optional[str]) -> bool:
    return bool(app) and app.strip() in SYSTEM_APP_NAMES


def is_browser_app(app: Optional[str]) -> bool:
    return bool(app) and app.strip().lower() in BROWSER_APP_NAMES


def is_editor_app(app: Optional[str]) -> bool:
    return bool(app) and app.strip().lower() in EDITOR_APP_NAMES
