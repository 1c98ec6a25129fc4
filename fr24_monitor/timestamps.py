"""Timestamp canonicalization and display formatting.

Deployed databases contain two encodings: naive text written in the host's local clock
by older daemons, and explicit UTC written by current ones. Call sites always say which
encoding a value was stored with; nothing here guesses. The display zone is resolved
once and passed explicitly; no process-wide timezone state is touched.
"""

from __future__ import annotations

import os
import re
from datetime import datetime, timezone, tzinfo
from enum import Enum
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog


logger = structlog.get_logger(__name__)

DEFAULT_DISPLAY_ZONE = "Europe/London"
DISPLAY_FORMAT = "%d/%m/%Y %H:%M:%S"
STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
NOT_AVAILABLE = "N/A"

_ZONEINFO_MARKER = "zoneinfo/"
_OFFSET_SUFFIX_RE = re.compile(r"[+-]\d{2}(:?\d{2})?$")


class SourceEncoding(str, Enum):
    """How a stored timestamp was written."""

    NAIVE_LOCAL = "naive_local"
    UTC = "utc"


def load_zone(name: str | None) -> tzinfo | None:
    """Resolve an IANA zone name; ``None`` when empty or unknown."""
    cleaned = (name or "").strip()
    if not cleaned:
        return None
    if cleaned.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # Directory names such as "America" raise IsADirectoryError.
        return None


def detect_system_timezone(
    *,
    etc_timezone: Path = Path("/etc/timezone"),
    localtime: Path = Path("/etc/localtime"),
) -> str | None:
    """Best-effort name of the host's declared timezone (``TZ``, /etc/timezone, /etc/localtime)."""
    env = (os.getenv("TZ") or "").strip().lstrip(":")
    if env:
        return env

    try:
        declared = etc_timezone.read_text(encoding="utf-8").strip()
    except OSError:
        declared = ""
    if declared:
        return declared

    try:
        target = os.readlink(localtime)
    except OSError:
        return None
    idx = target.find(_ZONEINFO_MARKER)
    if idx < 0:
        return None
    return target[idx + len(_ZONEINFO_MARKER):] or None


def resolve_display_zone(system_name: str | None, configured_name: str | None = None) -> tzinfo:
    """
    Pick the display zone: the host's zone if it resolves, else the configured
    ``web.timezone``, else the fixed default.
    """
    for source, name in (("system", system_name), ("configured", configured_name)):
        if not name:
            continue
        zone = load_zone(name)
        if zone is not None:
            return zone
        logger.warning("Timezone not found; trying next candidate", source=source, tz=name)
    return ZoneInfo(DEFAULT_DISPLAY_ZONE)


def zone_name(zone: tzinfo) -> str:
    key = getattr(zone, "key", None)
    if key:
        return str(key)
    return str(zone.tzname(None) or zone)


def _parse_text(raw: str) -> datetime | None:
    s = raw.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    elif s.upper().endswith(" UTC"):
        s = s[:-4] + "+00:00"
    # "YYYY-MM-DD HH:MM:SS +0100" style offsets.
    if " " in s and _OFFSET_SUFFIX_RE.search(s):
        head, _, tail = s.rpartition(" ")
        if _OFFSET_SUFFIX_RE.fullmatch(tail):
            s = head + tail
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def canonicalize(raw: Any, encoding: SourceEncoding | str, source_zone: tzinfo | None = None) -> datetime | None:
    """
    Convert a stored timestamp to an aware UTC datetime.

    Naive values are attached to ``source_zone`` when the row was written as
    ``naive_local`` and to UTC when written as ``utc``. A value carrying its own offset
    is taken as-is. Returns ``None`` for anything unparsable.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, str):
        dt = _parse_text(raw)
    else:
        return None
    if dt is None:
        return None

    if dt.tzinfo is None:
        enc = SourceEncoding(encoding)
        if enc is SourceEncoding.UTC:
            dt = dt.replace(tzinfo=timezone.utc)
        else:
            if source_zone is None:
                raise ValueError("source_zone is required for naive_local timestamps")
            dt = dt.replace(tzinfo=source_zone)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Year 1 or 9999 shifted past the datetime range.
        return None


def to_storage(instant: datetime) -> str:
    """Canonical storage text: explicit UTC, second precision."""
    if instant.tzinfo is None:
        raise ValueError("refusing to store a naive datetime")
    return instant.astimezone(timezone.utc).strftime(STORAGE_FORMAT)


def format_for_display(instant: datetime | None, zone: tzinfo) -> str:
    """Render ``dd/mm/yyyy HH:MM:SS`` in ``zone``; ``N/A`` when missing."""
    if instant is None:
        return NOT_AVAILABLE
    try:
        if instant.tzinfo is None:
            return NOT_AVAILABLE
        return instant.astimezone(zone).strftime(DISPLAY_FORMAT)
    except (OverflowError, ValueError):
        return NOT_AVAILABLE


def render(raw: Any, encoding: SourceEncoding | str, zone: tzinfo) -> str:
    """canonicalize + format_for_display; legacy naive rows are read in ``zone``."""
    try:
        instant = canonicalize(raw, encoding, zone)
    except ValueError:
        return NOT_AVAILABLE
    return format_for_display(instant, zone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
