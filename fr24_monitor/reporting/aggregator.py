from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any

import structlog

from ..config import Configuration
from ..errors import StorageError
from ..storage import EventStore, MonitoringSample, RemediationEvent
from ..timestamps import format_for_display, zone_name


logger = structlog.get_logger(__name__)

DEFAULT_TREND_WINDOW = timedelta(hours=24)
DEFAULT_TREND_LIMIT = 50
WEEK = timedelta(days=7)


@dataclass(frozen=True)
class RebootCounts:
    total: int = 0
    today: int = 0
    week: int = 0
    month: int = 0
    year: int = 0


def reboot_counts(store: EventStore, now: datetime, zone: tzinfo) -> RebootCounts:
    """
    Count remediation events by period.

    ``today``, ``month`` and ``year`` are calendar periods in ``zone``; ``week`` is the
    rolling seven days ending at ``now``. Events stamped after ``now`` only count toward
    the total.
    """
    local_now = now.astimezone(zone)
    week_start = now - WEEK
    total = today = week = month = year = 0
    for instant in store.iter_event_timestamps():
        total += 1
        if instant > now:
            continue
        if instant >= week_start:
            week += 1
        local = instant.astimezone(zone)
        if local.year != local_now.year:
            continue
        year += 1
        if local.month == local_now.month:
            month += 1
            if local.day == local_now.day:
                today += 1
    return RebootCounts(total=total, today=today, week=week, month=month, year=year)


def latest_sample(store: EventStore) -> MonitoringSample | None:
    return store.latest_sample()


def latest_event(store: EventStore) -> RemediationEvent | None:
    return store.latest_event()


def trend(
    store: EventStore,
    now: datetime,
    window: timedelta = DEFAULT_TREND_WINDOW,
    limit: int = DEFAULT_TREND_LIMIT,
) -> list[MonitoringSample]:
    """Samples from the last ``window``, most recent first, at most ``limit``."""
    since = now - window
    return store.list_samples(since=since, limit=limit, until=now)


def recent_events(store: EventStore, limit: int) -> list[RemediationEvent]:
    return store.list_events(limit=limit)


def recent_samples(store: EventStore, limit: int = DEFAULT_TREND_LIMIT) -> list[MonitoringSample]:
    return store.list_samples(limit=limit)


def sample_view(sample: MonitoringSample, zone: tzinfo) -> dict[str, Any]:
    out = asdict(sample)
    out["timestamp"] = format_for_display(sample.timestamp, zone)
    out["timestamp_utc"] = sample.timestamp.isoformat() if sample.timestamp else None
    return out


def event_view(event: RemediationEvent, zone: tzinfo) -> dict[str, Any]:
    out = asdict(event)
    out["timestamp"] = format_for_display(event.timestamp, zone)
    out["timestamp_utc"] = event.timestamp.isoformat() if event.timestamp else None
    return out


def build_dashboard_summary(store: EventStore, config: Configuration, now: datetime, zone: tzinfo) -> dict[str, Any]:
    """
    JSON-ready dashboard summary.

    Storage failures do not propagate: the summary comes back with zeroed statistics and
    an ``error`` message so the operator still sees configuration and timing.
    """
    summary: dict[str, Any] = {
        "generated_at": format_for_display(now, zone),
        "timezone": zone_name(zone),
        "monitoring": {
            "endpoint_url": config.monitoring.endpoint_url,
            "aircraft_threshold": config.monitoring.aircraft_threshold,
            "check_interval_minutes": config.monitoring.check_interval_minutes,
            "dry_run_mode": config.reboot.dry_run_mode,
            "reboot_enabled": config.reboot.enabled,
        },
        "auto_refresh_seconds": config.web.auto_refresh_seconds,
        "reboot_counts": asdict(RebootCounts()),
        "last_reboot": None,
        "latest_sample": None,
        "trend": [],
        "recent_events": [],
        "error": None,
    }
    try:
        counts = reboot_counts(store, now, zone)
        last = latest_event(store)
        sample = latest_sample(store)
        points = trend(store, now)
        history = recent_events(store, config.web.max_reboot_history)
    except StorageError as exc:
        logger.warning("Dashboard summary without statistics", error=str(exc))
        summary["error"] = str(exc)
        return summary

    summary["reboot_counts"] = asdict(counts)
    summary["last_reboot"] = format_for_display(last.timestamp, zone) if last else None
    summary["latest_sample"] = sample_view(sample, zone) if sample else None
    summary["trend"] = [sample_view(s, zone) for s in points]
    summary["recent_events"] = [event_view(e, zone) for e in history]
    return summary
