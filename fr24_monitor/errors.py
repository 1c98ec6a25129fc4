"""Error taxonomy shared by the config store, event store and notification policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldError:
    """One rejected configuration field, addressed as ``section.field``."""

    field: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class MonitorError(Exception):
    """Base class for errors raised by fr24_monitor."""


class ConfigParseError(MonitorError):
    """The persisted config document could not be read or decoded."""


class ConfigValidationError(MonitorError):
    """A save was rejected because one or more fields are out of range."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors[:5])
        if len(self.errors) > 5:
            summary += f"; ... ({len(self.errors) - 5} more)"
        super().__init__(f"Invalid configuration: {summary}")


class PersistenceError(MonitorError):
    """Writing the config document (or another state file) failed."""


class StorageError(MonitorError):
    """The sample/event store is unavailable or a statement failed."""


class EmailNotConfiguredError(MonitorError):
    """Email alerts are disabled or missing the fields needed to compose a message."""
