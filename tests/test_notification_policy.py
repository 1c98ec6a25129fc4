from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from fr24_monitor.config import Configuration, merge_defaults
from fr24_monitor.errors import EmailNotConfiguredError
from fr24_monitor.notifications import (
    NotificationChannel,
    NotificationLedger,
    NotificationStatus,
    RemediationDecision,
    build_test_email,
    cooldown_key,
    evaluate_notifications,
)
from fr24_monitor.storage import MonitoringSample


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _config(**sections: dict[str, Any]) -> Configuration:
    base: dict[str, Any] = {
        "notifications": {"email_enabled": True, "notification_cooldown_minutes": 60},
        "email": {"enabled": True, "smtp_host": "smtp.example.com", "to_email": "ops@example.com"},
    }
    for name, values in sections.items():
        base.setdefault(name, {}).update(values)
    return Configuration.model_validate(merge_defaults(base))


def _decision(**kw: Any) -> RemediationDecision:
    base: dict[str, Any] = dict(
        action_class="reboot",
        reason="Tracked aircraft 3 below threshold 30",
        tracked_aircraft=3,
        threshold=30,
        uptime_hours=6.5,
        endpoint="http://localhost:8754/monitor.json",
        sample=MonitoringSample(timestamp=NOW - timedelta(minutes=1), tracked_aircraft=3, feed_status="connected"),
    )
    base.update(kw)
    return RemediationDecision(**base)


def _by_channel(decisions) -> dict[NotificationChannel, Any]:
    return {d.channel: d for d in decisions}


def test_first_alert_is_due_with_payload() -> None:
    out = _by_channel(evaluate_notifications(_decision(), _config(), NOW))
    email = out[NotificationChannel.EMAIL]
    assert email.due
    assert email.payload.recipient == "ops@example.com"
    assert email.payload.threshold == 30
    assert email.payload.subject == "FR24 Monitor Alert: System Reboot Required"
    assert "Tracked aircraft: 3 (threshold 30)" in email.payload.body
    assert email.payload.sample.tracked_aircraft == 3
    assert out[NotificationChannel.WEBHOOK].status is NotificationStatus.DISABLED


def test_cooldown_suppresses_until_the_window_has_passed() -> None:
    key = cooldown_key(NotificationChannel.EMAIL, "reboot")
    cfg = _config()

    inside = _by_channel(evaluate_notifications(_decision(), cfg, NOW, {key: NOW - timedelta(minutes=30)}))
    email = inside[NotificationChannel.EMAIL]
    assert email.status is NotificationStatus.SUPPRESSED
    assert email.next_allowed_at == NOW + timedelta(minutes=30)
    assert email.payload is None

    boundary = _by_channel(evaluate_notifications(_decision(), cfg, NOW, {key: NOW - timedelta(minutes=60)}))
    assert boundary[NotificationChannel.EMAIL].due


def test_channels_and_action_classes_are_independent() -> None:
    cfg = _config(notifications={"webhook_enabled": True, "webhook_url": "https://hooks.example.com/fr24"})
    history = {
        cooldown_key(NotificationChannel.EMAIL, "reboot"): NOW - timedelta(minutes=10),
        cooldown_key(NotificationChannel.WEBHOOK, "service_restart"): NOW - timedelta(minutes=10),
    }
    out = _by_channel(evaluate_notifications(_decision(), cfg, NOW, history))
    assert out[NotificationChannel.EMAIL].status is NotificationStatus.SUPPRESSED
    assert out[NotificationChannel.WEBHOOK].due
    assert out[NotificationChannel.WEBHOOK].payload.recipient == "https://hooks.example.com/fr24"


def test_send_email_alerts_only_gates_reboot_actions() -> None:
    cfg = _config(reboot={"send_email_alerts": False})
    reboot = _by_channel(evaluate_notifications(_decision(), cfg, NOW))
    assert reboot[NotificationChannel.EMAIL].status is NotificationStatus.DISABLED
    assert reboot[NotificationChannel.EMAIL].detail == "reboot.send_email_alerts"

    feed = _by_channel(evaluate_notifications(_decision(action_class="feed_down"), cfg, NOW))
    assert feed[NotificationChannel.EMAIL].due


def test_unconfigured_channels_are_disabled() -> None:
    cfg = _config(email={"smtp_host": ""}, notifications={"webhook_enabled": True, "webhook_url": ""})
    out = _by_channel(evaluate_notifications(_decision(), cfg, NOW))
    assert out[NotificationChannel.EMAIL].status is NotificationStatus.DISABLED
    assert "email.smtp_host" in out[NotificationChannel.EMAIL].detail
    assert out[NotificationChannel.WEBHOOK].detail == "notifications.webhook_url"


def test_dry_run_is_marked_and_payload_serializes() -> None:
    cfg = _config(notifications={"webhook_enabled": True, "webhook_url": "https://hooks.example.com/fr24"})
    out = _by_channel(evaluate_notifications(_decision(dry_run=True), cfg, NOW))
    email = out[NotificationChannel.EMAIL].payload
    assert email.subject.startswith("[DRY RUN] ")
    assert "no action was taken" in email.body

    body = out[NotificationChannel.WEBHOOK].payload.to_dict()
    assert json.loads(json.dumps(body))["sample"]["timestamp"] == "2024-06-01T11:59:00Z"
    assert body["dry_run"] is True
    assert body["generated_at"] == "2024-06-01T12:00:00Z"


def test_ledger_round_trip(tmp_path: Path) -> None:
    ledger = NotificationLedger(tmp_path / "state" / "notifications.json")
    assert ledger.load() == {}

    ledger.record(NotificationChannel.EMAIL, "reboot", NOW)
    ledger.record(NotificationChannel.WEBHOOK, "reboot", NOW + timedelta(minutes=5))
    assert ledger.last_sent(NotificationChannel.EMAIL, "reboot") == NOW
    assert ledger.load()[cooldown_key(NotificationChannel.WEBHOOK, "reboot")] == NOW + timedelta(minutes=5)

    history = ledger.load()
    out = _by_channel(evaluate_notifications(_decision(), _config(), NOW + timedelta(minutes=10), history))
    assert out[NotificationChannel.EMAIL].status is NotificationStatus.SUPPRESSED


def test_corrupt_ledger_reads_as_empty(tmp_path: Path) -> None:
    p = tmp_path / "notifications.json"
    p.write_text("{oops", encoding="utf-8")
    ledger = NotificationLedger(p)
    assert ledger.load() == {}
    ledger.record("email", "reboot", NOW)
    assert json.loads(p.read_text(encoding="utf-8")) == {"last_sent": {"email:reboot": "2024-06-01T12:00:00Z"}}


def test_test_email_requires_enabled_alerts() -> None:
    cfg = Configuration.model_validate(merge_defaults({}))
    with pytest.raises(EmailNotConfiguredError):
        build_test_email(cfg, NOW, timezone.utc, "feeder-pi")


def test_test_email_lists_the_tested_settings() -> None:
    cfg = _config(email={"smtp_security": "ssl", "smtp_port": 465, "from_email": "pi@example.com"})
    msg = build_test_email(cfg, NOW, timezone.utc, "feeder-pi")
    assert msg.subject == "FR24 Monitor Test Email"
    assert msg.to_email == "ops@example.com"
    assert "SMTP Server: smtp.example.com:465" in msg.body
    assert "Security: SSL" in msg.body
    assert "System: feeder-pi" in msg.body
    assert "Timestamp: 01/06/2024 12:00:00" in msg.body


def test_test_email_requires_a_recipient() -> None:
    cfg = _config(email={"to_email": ""})
    with pytest.raises(EmailNotConfiguredError):
        build_test_email(cfg, NOW, timezone.utc, "feeder-pi")
