from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import Configuration


@dataclass(frozen=True)
class MonitoringSample:
    """One polling observation of the feeder."""

    timestamp: datetime | None
    tracked_aircraft: int
    uploaded_aircraft: int | None = None
    endpoint: str = ""
    feed_status: str | None = None
    feed_server: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class RemediationEvent:
    """One reboot/remediation decision; ``dry_run`` means it was logged but not acted on."""

    timestamp: datetime | None
    tracked_aircraft: int
    threshold: int
    reason: str
    dry_run: bool
    uptime_hours: float
    endpoint: str = ""
    id: int | None = None


@dataclass(frozen=True)
class PruneResult:
    samples: int
    events: int


@dataclass(frozen=True)
class MigrationResult:
    samples: int
    events: int
    skipped: int

    @property
    def total(self) -> int:
        return self.samples + self.events


def new_remediation_event(
    config: "Configuration",
    *,
    timestamp: datetime,
    tracked_aircraft: int,
    reason: str,
    uptime_hours: float,
    dry_run: bool | None = None,
) -> RemediationEvent:
    """
    Build an event stamped with the threshold and endpoint actually in force.

    ``dry_run`` defaults to the configured ``reboot.dry_run_mode``.
    """
    return RemediationEvent(
        timestamp=timestamp,
        tracked_aircraft=int(tracked_aircraft),
        threshold=int(config.monitoring.aircraft_threshold),
        reason=str(reason),
        dry_run=bool(config.reboot.dry_run_mode if dry_run is None else dry_run),
        uptime_hours=float(uptime_hours),
        endpoint=config.monitoring.endpoint_url,
    )
