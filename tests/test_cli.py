from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog

from fr24_monitor import cli
from fr24_monitor.config import default_config, load_config, save_config
from fr24_monitor.storage import EventStore, RemediationEvent


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch):
    # Keep stdout clean for the JSON-printing commands.
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    yield
    structlog.reset_defaults()


def _run(tmp_path: Path, *argv: str) -> int:
    return cli.main(["--config", str(tmp_path / "config.json"), "--db", str(tmp_path / "monitor.db"), *argv])


def test_show_config_prints_defaults(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "show-config") == 0
    assert json.loads(capsys.readouterr().out) == default_config().to_document()


def test_validate_config_reports_bad_fields(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"web": {"port": 80}}), encoding="utf-8")
    assert _run(tmp_path, "validate-config") == 1
    assert "web.port" in capsys.readouterr().err

    (tmp_path / "config.json").write_text(json.dumps({"web": {"port": 8080}}), encoding="utf-8")
    assert _run(tmp_path, "validate-config") == 0


def test_reset_needs_confirmation(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    save_config({"monitoring": {"aircraft_threshold": 3}}, cfg_path)
    assert _run(tmp_path, "reset-config") == 2
    assert load_config(cfg_path).monitoring.aircraft_threshold == 3
    assert _run(tmp_path, "reset-config", "--yes") == 0
    assert load_config(cfg_path).monitoring.aircraft_threshold == 30


def test_delete_event_reports_affected_rows(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store = EventStore(tmp_path / "monitor.db", timezone.utc)
    event_id = store.record_event(
        RemediationEvent(
            timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc),
            tracked_aircraft=0,
            threshold=30,
            reason="Feed offline",
            dry_run=False,
            uptime_hours=10.0,
        )
    )
    assert _run(tmp_path, "delete-event", str(event_id)) == 0
    assert "deleted=1" in capsys.readouterr().out
    assert _run(tmp_path, "delete-event", str(event_id)) == 0
    assert "deleted=0" in capsys.readouterr().out


def test_migrate_timestamps_with_explicit_zone(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db = tmp_path / "monitor.db"
    EventStore(db, timezone.utc).ensure_schema()
    conn = sqlite3.connect(db)
    try:
        conn.execute(
            "INSERT INTO reboot_events (timestamp, ts_encoding, tracked_aircraft, threshold, reason, dry_run) "
            "VALUES ('2024-06-01 10:00:00', 'naive_local', 1, 30, 'legacy', 0)"
        )
        conn.commit()
    finally:
        conn.close()

    # Etc/GMT-1 is UTC+1.
    assert _run(tmp_path, "migrate-timestamps", "--zone", "Etc/GMT-1") == 0
    assert "events=1" in capsys.readouterr().out
    assert EventStore(db, timezone.utc).latest_event().timestamp == datetime(2024, 6, 1, 9, tzinfo=timezone.utc)
    assert _run(tmp_path, "migrate-timestamps", "--zone", "Not/AZone") == 2


def test_prune_uses_retention_days(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store = EventStore(tmp_path / "monitor.db", timezone.utc)
    store.record_event(
        RemediationEvent(
            timestamp=datetime(2000, 1, 1, tzinfo=timezone.utc),
            tracked_aircraft=0,
            threshold=30,
            reason="ancient",
            dry_run=False,
            uptime_hours=1.0,
        )
    )
    assert _run(tmp_path, "prune") == 0
    assert "events=1" in capsys.readouterr().out
    assert store.count_events() == 0


def test_import_email_config(tmp_path: Path) -> None:
    legacy = tmp_path / "email_config.json"
    legacy.write_text(
        json.dumps({"enabled": True, "smtp_host": "smtp.example.com", "smtp_user": "feeder", "smtp_security": "ssl"}),
        encoding="utf-8",
    )
    assert _run(tmp_path, "import-email-config", str(legacy)) == 0
    cfg = load_config(tmp_path / "config.json")
    assert cfg.email.smtp_username == "feeder"
    assert cfg.email.smtp_security == "ssl"
    assert cfg.email.use_tls is False
    assert _run(tmp_path, "import-email-config", str(tmp_path / "missing.json")) == 1


def test_summary_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "summary") == 0
    assert json.loads(capsys.readouterr().out)["reboot_counts"]["total"] == 0
