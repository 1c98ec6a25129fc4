"""Decide whether an alert is due for a remediation decision, per channel.

Nothing here sends anything. The daemon asks :func:`evaluate_notifications`, delivers
the due payloads itself and then records the send time (see ``NotificationLedger``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Mapping

import structlog

from ..config import Configuration
from ..storage import MonitoringSample
from ..timestamps import to_storage
from .messages import alert_body, alert_subject


logger = structlog.get_logger(__name__)

# Action classes that count as "about to reboot" for reboot.send_email_alerts.
REBOOT_ACTIONS = frozenset({"reboot", "service_restart"})


class NotificationChannel(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"


class NotificationStatus(str, Enum):
    DUE = "due"
    SUPPRESSED = "suppressed"
    DISABLED = "disabled"


@dataclass(frozen=True)
class RemediationDecision:
    """A proposed action from the daemon's policy, before it is carried out."""

    action_class: str
    reason: str
    tracked_aircraft: int
    threshold: int
    uptime_hours: float
    dry_run: bool = False
    endpoint: str = ""
    sample: MonitoringSample | None = None


@dataclass(frozen=True)
class NotificationPayload:
    channel: NotificationChannel
    action_class: str
    recipient: str
    subject: str
    body: str
    reason: str
    tracked_aircraft: int
    threshold: int
    uptime_hours: float
    dry_run: bool
    endpoint: str
    sample: MonitoringSample | None = None
    generated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Webhook-ready JSON body."""
        sample: dict[str, Any] | None = None
        if self.sample is not None:
            sample = {
                "timestamp": to_storage(self.sample.timestamp) if self.sample.timestamp else None,
                "tracked_aircraft": self.sample.tracked_aircraft,
                "uploaded_aircraft": self.sample.uploaded_aircraft,
                "feed_status": self.sample.feed_status,
                "feed_server": self.sample.feed_server,
            }
        return {
            "channel": self.channel.value,
            "action": self.action_class,
            "subject": self.subject,
            "reason": self.reason,
            "tracked_aircraft": self.tracked_aircraft,
            "threshold": self.threshold,
            "uptime_hours": self.uptime_hours,
            "dry_run": self.dry_run,
            "endpoint": self.endpoint,
            "sample": sample,
            "generated_at": to_storage(self.generated_at) if self.generated_at else None,
        }


@dataclass(frozen=True)
class NotificationDecision:
    channel: NotificationChannel
    status: NotificationStatus
    detail: str = ""
    payload: NotificationPayload | None = None
    next_allowed_at: datetime | None = None

    @property
    def due(self) -> bool:
        return self.status is NotificationStatus.DUE


@dataclass
class _ChannelCheck:
    enabled: bool
    recipient: str = ""
    missing: list[str] = field(default_factory=list)


def cooldown_key(channel: NotificationChannel | str, action_class: str) -> str:
    ch = channel.value if isinstance(channel, NotificationChannel) else str(channel)
    return f"{ch}:{action_class}"


def cooldown_for(config: Configuration) -> timedelta:
    return timedelta(minutes=int(config.notifications.notification_cooldown_minutes))


def within_cooldown(now: datetime, last_sent: datetime | None, cooldown: timedelta) -> bool:
    """True while ``now - last_sent < cooldown``; exactly one cooldown later is due again."""
    if last_sent is None:
        return False
    return now - last_sent < cooldown


def _check_channel(channel: NotificationChannel, decision: RemediationDecision, config: Configuration) -> _ChannelCheck:
    if channel is NotificationChannel.EMAIL:
        if not config.notifications.email_enabled:
            return _ChannelCheck(enabled=False, missing=["notifications.email_enabled"])
        if decision.action_class in REBOOT_ACTIONS and not config.reboot.send_email_alerts:
            return _ChannelCheck(enabled=False, missing=["reboot.send_email_alerts"])
        missing = [f"email.{n}" for n in ("smtp_host", "to_email") if not str(getattr(config.email, n) or "").strip()]
        return _ChannelCheck(enabled=not missing, recipient=config.email.to_email.strip(), missing=missing)

    if not config.notifications.webhook_enabled:
        return _ChannelCheck(enabled=False, missing=["notifications.webhook_enabled"])
    url = (config.notifications.webhook_url or "").strip()
    if not url:
        return _ChannelCheck(enabled=False, missing=["notifications.webhook_url"])
    return _ChannelCheck(enabled=True, recipient=url)


def evaluate_notifications(
    decision: RemediationDecision,
    config: Configuration,
    now: datetime,
    last_sent: Mapping[str, datetime] | None = None,
    *,
    zone: tzinfo = timezone.utc,
    hostname: str = "",
) -> list[NotificationDecision]:
    """
    One decision per channel (email, then webhook).

    ``last_sent`` maps :func:`cooldown_key` values to the instant the last alert for that
    channel and action class went out. Channels are independent: a recent email never
    suppresses a webhook.
    """
    history = dict(last_sent or {})
    cooldown = cooldown_for(config)
    subject = alert_subject(config, decision)
    body = alert_body(decision, now, zone, hostname)

    out: list[NotificationDecision] = []
    for channel in NotificationChannel:
        check = _check_channel(channel, decision, config)
        if not check.enabled:
            out.append(NotificationDecision(channel=channel, status=NotificationStatus.DISABLED, detail=", ".join(check.missing)))
            continue

        previous = history.get(cooldown_key(channel, decision.action_class))
        if within_cooldown(now, previous, cooldown):
            next_at = previous + cooldown if previous else None
            logger.info(
                "Notification suppressed by cooldown",
                channel=channel.value,
                action=decision.action_class,
                next_allowed_at=next_at.isoformat() if next_at else None,
            )
            out.append(
                NotificationDecision(
                    channel=channel,
                    status=NotificationStatus.SUPPRESSED,
                    detail="cooldown",
                    next_allowed_at=next_at,
                )
            )
            continue

        payload = NotificationPayload(
            channel=channel,
            action_class=decision.action_class,
            recipient=check.recipient,
            subject=subject,
            body=body,
            reason=decision.reason,
            tracked_aircraft=int(decision.tracked_aircraft),
            threshold=int(decision.threshold),
            uptime_hours=float(decision.uptime_hours),
            dry_run=bool(decision.dry_run),
            endpoint=decision.endpoint,
            sample=decision.sample,
            generated_at=now,
        )
        out.append(NotificationDecision(channel=channel, status=NotificationStatus.DUE, payload=payload))
    return out
