from .aggregator import (
    RebootCounts,
    build_dashboard_summary,
    event_view,
    latest_event,
    latest_sample,
    reboot_counts,
    recent_events,
    recent_samples,
    sample_view,
    trend,
)

__all__ = [
    "RebootCounts",
    "build_dashboard_summary",
    "event_view",
    "latest_event",
    "latest_sample",
    "reboot_counts",
    "recent_events",
    "recent_samples",
    "sample_view",
    "trend",
]
