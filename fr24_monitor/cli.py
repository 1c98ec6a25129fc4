"""Operator command line for the event store and the config document."""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Sequence

import structlog

from .config import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    import_legacy_email_config,
    load_config,
    merge_defaults,
    reset_config,
    save_config,
    validate_config,
)
from .errors import ConfigParseError, ConfigValidationError, MonitorError
from .log import configure_logging, level_for
from .reporting import build_dashboard_summary
from .state_files import read_json_object
from .storage import EventStore
from .timestamps import detect_system_timezone, load_zone, resolve_display_zone, utc_now, zone_name


logger = structlog.get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2))


def _store(args: argparse.Namespace):
    config = load_config(args.config)
    zone = resolve_display_zone(detect_system_timezone(), config.web.timezone)
    return config, zone, EventStore(args.db, zone)


def cmd_summary(args: argparse.Namespace) -> int:
    config, zone, store = _store(args)
    summary = build_dashboard_summary(store, config, utc_now(), zone)
    _print_json(summary)
    return 1 if summary.get("error") else 0


def cmd_show_config(args: argparse.Namespace) -> int:
    _print_json(load_config(args.config).to_document())
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    path = Path(args.config)
    try:
        raw = read_json_object(path)
    except FileNotFoundError:
        print(f"{path}: not found (defaults apply)")
        return 0
    except ConfigParseError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    errors = validate_config(raw)
    for err in errors:
        print(str(err), file=sys.stderr)
    if errors:
        return 1
    print(f"{path}: ok")
    return 0


def cmd_reset_config(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to reset without --yes", file=sys.stderr)
        return 2
    reset_config(args.config)
    print(f"{args.config}: reset to defaults")
    return 0


def cmd_import_email_config(args: argparse.Namespace) -> int:
    try:
        section = import_legacy_email_config(args.source)
    except FileNotFoundError:
        print(f"{args.source}: not found", file=sys.stderr)
        return 1
    document = merge_defaults(load_config(args.config))
    document["email"].update(section)
    save_config(document, args.config)
    print(f"Imported email settings from {args.source}")
    return 0


def cmd_delete_event(args: argparse.Namespace) -> int:
    _, _, store = _store(args)
    deleted = store.delete_event(args.event_id)
    print(f"deleted={deleted}")
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    config, _, store = _store(args)
    days = int(args.days or config.logging.database_retention_days)
    result = store.prune(utc_now() - timedelta(days=days))
    print(f"pruned samples={result.samples} events={result.events} (older than {days} days)")
    return 0


def cmd_migrate_timestamps(args: argparse.Namespace) -> int:
    _, zone, store = _store(args)
    if args.zone:
        zone = load_zone(args.zone)
        if zone is None:
            print(f"Unknown timezone: {args.zone}", file=sys.stderr)
            return 2
    result = store.migrate_legacy_timestamps(zone)
    print(
        f"migrated samples={result.samples} events={result.events} skipped={result.skipped} "
        f"zone={zone_name(zone)}"
    )
    return 1 if result.skipped else 0


def cmd_serve(args: argparse.Namespace) -> int:
    from .dashboard.server import main as serve
    from .dashboard.settings import DashboardSettings

    settings = DashboardSettings(config_path=str(args.config), db_path=str(args.db))
    serve(settings, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fr24-monitor", description="FR24 feeder monitor tools")
    parser.add_argument(
        "--config",
        default=os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH),
        help="Path to the JSON config document",
    )
    parser.add_argument(
        "--db",
        default=os.getenv("FR24_MONITOR_DB", "fr24_monitor.db"),
        help="Path to the SQLite event store",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARN, ERROR)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("summary", help="Print the dashboard summary as JSON").set_defaults(func=cmd_summary)
    sub.add_parser("show-config", help="Print the effective configuration").set_defaults(func=cmd_show_config)
    sub.add_parser("validate-config", help="Check the persisted config document").set_defaults(func=cmd_validate_config)

    p = sub.add_parser("reset-config", help="Overwrite the config document with defaults")
    p.add_argument("--yes", action="store_true", help="Confirm the reset")
    p.set_defaults(func=cmd_reset_config)

    p = sub.add_parser("import-email-config", help="Merge a legacy email_config.json into the config")
    p.add_argument("source", help="Path to the legacy email document")
    p.set_defaults(func=cmd_import_email_config)

    p = sub.add_parser("delete-event", help="Delete one remediation event by id")
    p.add_argument("event_id", type=int)
    p.set_defaults(func=cmd_delete_event)

    p = sub.add_parser("prune", help="Drop rows older than the retention window")
    p.add_argument("--days", type=int, default=None, help="Override logging.database_retention_days")
    p.set_defaults(func=cmd_prune)

    p = sub.add_parser("migrate-timestamps", help="Rewrite legacy local-clock timestamps as UTC")
    p.add_argument("--zone", default=None, help="Zone the legacy rows were written in (default: display zone)")
    p.set_defaults(func=cmd_migrate_timestamps)

    p = sub.add_parser("serve", help="Run the JSON dashboard API")
    p.add_argument("--port", type=int, default=None, help="Override web.port")
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level_for(load_config(args.config).logging, args.log_level))
    try:
        return int(args.func(args))
    except ConfigValidationError as exc:
        for err in exc.errors:
            print(str(err), file=sys.stderr)
        return 1
    except MonitorError as exc:
        logger.error("Command failed", command=args.command, error=str(exc))
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
