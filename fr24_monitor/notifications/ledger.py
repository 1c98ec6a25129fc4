from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from ..errors import ConfigParseError
from ..state_files import read_json_object, write_json_atomic
from ..timestamps import SourceEncoding, canonicalize, to_storage
from .policy import NotificationChannel, cooldown_key


logger = structlog.get_logger(__name__)

DEFAULT_LEDGER_PATH = "notification_state.json"


class NotificationLedger:
    """
    Last-sent instants per channel and action class, kept in a small JSON file.

    A missing or corrupt file reads as "nothing sent yet". Writes go through the same
    temp-file + replace path as the config document.
    """

    def __init__(self, path: str | Path = DEFAULT_LEDGER_PATH) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, datetime]:
        try:
            raw = read_json_object(self.path)
        except FileNotFoundError:
            return {}
        except ConfigParseError as exc:
            logger.warning("Notification ledger unreadable; treating as empty", path=str(self.path), error=str(exc))
            return {}

        entries = raw.get("last_sent")
        if not isinstance(entries, dict):
            return {}
        out: dict[str, datetime] = {}
        for key, value in entries.items():
            instant = canonicalize(value, SourceEncoding.UTC)
            if instant is None:
                logger.warning("Dropping unparsable ledger entry", key=key, value=value)
                continue
            out[str(key)] = instant
        return out

    def last_sent(self, channel: NotificationChannel | str, action_class: str) -> datetime | None:
        return self.load().get(cooldown_key(channel, action_class))

    def record(self, channel: NotificationChannel | str, action_class: str, sent_at: datetime) -> None:
        entries = self.load()
        entries[cooldown_key(channel, action_class)] = sent_at
        payload: dict[str, Any] = {"last_sent": {k: to_storage(v) for k, v in sorted(entries.items())}}
        write_json_atomic(self.path, payload)
        logger.info("Notification recorded", channel=str(getattr(channel, "value", channel)), action=action_class)
