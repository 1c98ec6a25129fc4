from .event_store import EventStore
from .records import MigrationResult, MonitoringSample, PruneResult, RemediationEvent, new_remediation_event
from .schema import SCHEMA_VERSION, connect, ensure_schema_conn

__all__ = [
    "EventStore",
    "MigrationResult",
    "MonitoringSample",
    "PruneResult",
    "RemediationEvent",
    "SCHEMA_VERSION",
    "connect",
    "ensure_schema_conn",
    "new_remediation_event",
]
