from __future__ import annotations

import asyncio
import socket
from dataclasses import asdict
from datetime import timedelta, tzinfo
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import (
    Configuration,
    config_from_form,
    load_config,
    reset_config,
    save_config,
    save_settings,
)
from ..errors import ConfigValidationError, EmailNotConfiguredError, PersistenceError, StorageError
from ..notifications import NotificationLedger, build_test_email
from ..reporting import build_dashboard_summary, event_view, recent_events, recent_samples, sample_view, trend
from ..storage import EventStore
from ..timestamps import format_for_display, resolve_display_zone, utc_now, zone_name
from .settings import DashboardSettings


logger = structlog.get_logger(__name__)


def _validation_response(exc: ConfigValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "detail": "invalid_config",
            "errors": [{"field": e.field, "message": e.message} for e in exc.errors],
        },
    )


def create_app(settings: DashboardSettings | None = None) -> FastAPI:
    app = FastAPI(title="FR24 Monitor", version=__version__)
    app.state.settings = settings or DashboardSettings()

    def _config() -> Configuration:
        return load_config(app.state.settings.config_path)

    def _zone(config: Configuration) -> tzinfo:
        return resolve_display_zone(app.state.settings.system_timezone, config.web.timezone)

    def _store(zone: tzinfo) -> EventStore:
        return EventStore(app.state.settings.db_path, zone)

    def _context() -> tuple[Configuration, tzinfo, EventStore]:
        config = _config()
        zone = _zone(config)
        return config, zone, _store(zone)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True, "version": __version__}

    @app.get("/api/summary")
    async def api_summary() -> dict[str, Any]:
        def _summary() -> dict[str, Any]:
            config, zone, store = _context()
            return build_dashboard_summary(store, config, utc_now(), zone)

        return await asyncio.to_thread(_summary)

    @app.get("/api/trend")
    async def api_trend(
        hours: int = Query(24, ge=1, le=168),
        limit: int = Query(50, ge=1, le=1000),
    ) -> dict[str, Any]:
        def _load() -> tuple[tzinfo, list[Any]]:
            _, zone, store = _context()
            return zone, trend(store, utc_now(), timedelta(hours=hours), limit)

        try:
            zone, points = await asyncio.to_thread(_load)
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"hours": hours, "timezone": zone_name(zone), "samples": [sample_view(s, zone) for s in points]}

    @app.get("/api/events")
    async def api_events(limit: int | None = Query(None, ge=1, le=500)) -> dict[str, Any]:
        def _load() -> tuple[tzinfo, list[Any]]:
            config, zone, store = _context()
            return zone, recent_events(store, limit or config.web.max_reboot_history)

        try:
            zone, events = await asyncio.to_thread(_load)
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"timezone": zone_name(zone), "events": [event_view(e, zone) for e in events]}

    @app.get("/api/samples")
    async def api_samples(limit: int = Query(50, ge=1, le=1000)) -> dict[str, Any]:
        def _load() -> tuple[tzinfo, list[Any]]:
            _, zone, store = _context()
            return zone, recent_samples(store, limit)

        try:
            zone, samples = await asyncio.to_thread(_load)
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"timezone": zone_name(zone), "samples": [sample_view(s, zone) for s in samples]}

    @app.delete("/api/events/{event_id}")
    async def api_delete_event(event_id: int) -> dict[str, Any]:
        def _delete() -> int:
            _, _, store = _context()
            return store.delete_event(event_id)

        try:
            deleted = await asyncio.to_thread(_delete)
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"ok": True, "id": event_id, "deleted": deleted}

    @app.get("/api/config")
    def api_get_config() -> dict[str, Any]:
        return _config().to_document()

    @app.put("/api/config")
    async def api_put_config(req: Request) -> Any:
        try:
            body = await req.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_json") from exc
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="config_must_be_object")
        try:
            saved = await asyncio.to_thread(save_settings, body, app.state.settings.config_path)
        except ConfigValidationError as exc:
            return _validation_response(exc)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"ok": True, "config": saved.to_document()}

    @app.post("/api/config/form")
    async def api_post_config_form(req: Request) -> Any:
        form = await req.form()
        document = config_from_form({k: v for k, v in form.items() if isinstance(v, str)})
        try:
            saved = await asyncio.to_thread(save_config, document, app.state.settings.config_path)
        except ConfigValidationError as exc:
            return _validation_response(exc)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"ok": True, "config": saved.to_document()}

    @app.post("/api/config/reset")
    async def api_reset_config() -> dict[str, Any]:
        try:
            config = await asyncio.to_thread(reset_config, app.state.settings.config_path)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"ok": True, "config": config.to_document()}

    @app.get("/api/notifications")
    def api_notifications() -> dict[str, Any]:
        zone = _zone(_config())
        entries = NotificationLedger(app.state.settings.ledger_path).load()
        return {"last_sent": {k: format_for_display(v, zone) for k, v in sorted(entries.items())}}

    @app.post("/api/notifications/test-email")
    def api_test_email() -> dict[str, Any]:
        config = _config()
        zone = _zone(config)
        try:
            message = build_test_email(config, utc_now(), zone, socket.gethostname())
        except EmailNotConfiguredError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        logger.info("Composed test email", to=message.to_email)
        return {"ok": True, "email": asdict(message)}

    return app
