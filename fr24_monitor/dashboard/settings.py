from __future__ import annotations

import os
from dataclasses import dataclass, field

from ..config import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH
from ..notifications import DEFAULT_LEDGER_PATH
from ..timestamps import detect_system_timezone


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


@dataclass(frozen=True)
class DashboardSettings:
    config_path: str = field(default_factory=lambda: _env_str(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
    db_path: str = field(default_factory=lambda: _env_str("FR24_MONITOR_DB", "fr24_monitor.db"))
    ledger_path: str = field(default_factory=lambda: _env_str("FR24_MONITOR_LEDGER", DEFAULT_LEDGER_PATH))
    host: str = field(default_factory=lambda: _env_str("FR24_MONITOR_HOST", "0.0.0.0"))
    # Host zone name; takes precedence over web.timezone when it resolves.
    system_timezone: str | None = field(default_factory=detect_system_timezone)
