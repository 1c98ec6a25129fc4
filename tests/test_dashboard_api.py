from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fastapi.testclient import TestClient

from fr24_monitor.config import default_config
from fr24_monitor.dashboard import DashboardSettings, create_app
from fr24_monitor.notifications import NotificationLedger
from fr24_monitor.storage import EventStore, MonitoringSample, RemediationEvent
from fr24_monitor.timestamps import utc_now


def _settings(tmp_path: Path) -> DashboardSettings:
    return DashboardSettings(
        config_path=str(tmp_path / "config.json"),
        db_path=str(tmp_path / "monitor.db"),
        ledger_path=str(tmp_path / "notifications.json"),
        host="127.0.0.1",
        system_timezone="UTC",
    )


def _client(tmp_path: Path) -> tuple[TestClient, DashboardSettings]:
    settings = _settings(tmp_path)
    return TestClient(create_app(settings)), settings


def _record_event(settings: DashboardSettings, ts: datetime) -> int:
    store = EventStore(settings.db_path, timezone.utc)
    return store.record_event(
        RemediationEvent(timestamp=ts, tracked_aircraft=1, threshold=30, reason="Low aircraft count", dry_run=True, uptime_hours=4.0)
    )


def test_health(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_summary_on_empty_store(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    r = client.get("/api/summary")
    assert r.status_code == 200
    body = r.json()
    assert body["error"] is None
    assert body["timezone"] == "UTC"
    assert body["reboot_counts"]["total"] == 0
    assert body["last_reboot"] is None


def test_events_listing_and_idempotent_delete(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    event_id = _record_event(settings, utc_now() - timedelta(hours=1))

    events = client.get("/api/events").json()["events"]
    assert [e["id"] for e in events] == [event_id]
    assert events[0]["dry_run"] is True

    r = client.delete(f"/api/events/{event_id}")
    assert r.status_code == 200
    assert r.json()["deleted"] == 1
    r = client.delete(f"/api/events/{event_id}")
    assert r.status_code == 200
    assert r.json()["deleted"] == 0
    assert client.get("/api/events").json()["events"] == []


def test_trend_and_samples(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    store = EventStore(settings.db_path, timezone.utc)
    now = utc_now()
    store.record_sample(MonitoringSample(timestamp=now - timedelta(hours=2), tracked_aircraft=41))
    store.record_sample(MonitoringSample(timestamp=now - timedelta(hours=30), tracked_aircraft=12))

    trend = client.get("/api/trend").json()["samples"]
    assert [s["tracked_aircraft"] for s in trend] == [41]
    samples = client.get("/api/samples", params={"limit": 10}).json()["samples"]
    assert [s["tracked_aircraft"] for s in samples] == [41, 12]
    assert client.get("/api/trend", params={"hours": 0}).status_code == 422


def test_put_config_rejects_out_of_range_port(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    doc = default_config().to_document()
    doc["web"]["port"] = 80
    r = client.put("/api/config", json=doc)
    assert r.status_code == 422
    assert [e["field"] for e in r.json()["errors"]] == ["web.port"]
    assert not Path(settings.config_path).exists()


def test_put_config_requires_every_flag(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    r = client.put("/api/config", json={"monitoring": {"aircraft_threshold": 5}})
    assert r.status_code == 422
    assert "reboot.enabled" in [e["field"] for e in r.json()["errors"]]


def test_put_then_get_config(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    doc = default_config().to_document()
    doc["monitoring"]["aircraft_threshold"] = 15
    doc["reboot"]["enabled"] = False
    r = client.put("/api/config", json=doc)
    assert r.status_code == 200
    got = client.get("/api/config").json()
    assert got["monitoring"]["aircraft_threshold"] == 15
    assert got["reboot"]["enabled"] is False
    on_disk = json.loads(Path(settings.config_path).read_text(encoding="utf-8"))
    assert on_disk["monitoring"]["aircraft_threshold"] == 15


def test_form_submission_treats_missing_checkboxes_as_off(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    r = client.post(
        "/api/config/form",
        data={"aircraft_threshold": " 12 ", "web_port": "7000", "reboot_enabled": "on", "smtp_security": "ssl"},
    )
    assert r.status_code == 200
    cfg = r.json()["config"]
    assert cfg["monitoring"]["aircraft_threshold"] == 12
    assert cfg["web"]["port"] == 7000
    assert cfg["reboot"]["enabled"] is True
    assert cfg["reboot"]["dry_run_mode"] is False
    assert cfg["reboot"]["send_email_alerts"] is False
    assert cfg["email"]["use_tls"] is False

    bad = client.post("/api/config/form", data={"web_port": "80"})
    assert bad.status_code == 422


def test_reset_config(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    client.post("/api/config/form", data={"aircraft_threshold": "12"})
    r = client.post("/api/config/reset")
    assert r.status_code == 200
    assert client.get("/api/config").json() == default_config().to_document()


def test_test_email_endpoint(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    assert client.post("/api/notifications/test-email").status_code == 400

    doc = default_config().to_document()
    doc["notifications"]["email_enabled"] = True
    doc["email"].update({"enabled": True, "smtp_host": "smtp.example.com", "to_email": "ops@example.com"})
    assert client.put("/api/config", json=doc).status_code == 200

    r = client.post("/api/notifications/test-email")
    assert r.status_code == 200
    assert r.json()["email"]["subject"] == "FR24 Monitor Test Email"


def test_notification_ledger_view(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    NotificationLedger(settings.ledger_path).record("email", "reboot", datetime(2024, 6, 1, 9, tzinfo=timezone.utc))
    assert client.get("/api/notifications").json() == {"last_sent": {"email:reboot": "01/06/2024 09:00:00"}}


def test_delete_of_unbindable_id_reports_nothing_deleted(tmp_path: Path) -> None:
    client, _ = _client(tmp_path)
    r = client.delete(f"/api/events/{2**70}")
    assert r.status_code == 200
    assert r.json()["deleted"] == 0


def test_zone_directory_as_host_zone_falls_back(tmp_path: Path) -> None:
    settings = replace(_settings(tmp_path), system_timezone="America")
    client = TestClient(create_app(settings))
    r = client.get("/api/summary")
    assert r.status_code == 200
    assert r.json()["timezone"] == "Europe/London"


def test_put_config_rejects_zone_directory(tmp_path: Path) -> None:
    client, settings = _client(tmp_path)
    doc = default_config().to_document()
    doc["web"]["timezone"] = "America"
    r = client.put("/api/config", json=doc)
    assert r.status_code == 422
    assert [e["field"] for e in r.json()["errors"]] == ["web.timezone"]
    assert not Path(settings.config_path).exists()


def test_summary_reports_unavailable_store(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    settings = replace(_settings(tmp_path), db_path=str(blocker / "monitor.db"))
    r = TestClient(create_app(settings)).get("/api/summary")
    assert r.status_code == 200
    assert r.json()["error"]
    assert r.json()["reboot_counts"]["total"] == 0
