#!/usr/bin/env python3
"""
Doorlock Hub HTTP API.

Thin FastAPI layer over the hub: command dispatch, live event stream,
schedule management and health/downtime reports. Authentication and roles
are enforced in front of this service, not here.
"""

from __future__ import annotations

import datetime
import time
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from command_pipeline import DispatchError, PublishError

if TYPE_CHECKING:
    from hub import DoorlockHub


# =============================================================================
# Request / response models
# =============================================================================

class SendCommandRequest(BaseModel):
    """Body of POST /api/send."""
    door_id: int = Field(..., gt=0, description="Target door id")
    command: str = Field(..., min_length=1, description="Command action, e.g. buka/kunci")


class SendCommandResponse(BaseModel):
    ok: bool
    topic: str
    message: str
    cmd_log_id: int


class ScheduleUpsertRequest(BaseModel):
    """Body of POST /api/schedules/upsert (one window per door per date)."""
    door_id: int = Field(..., gt=0)
    schedule_date: datetime.date
    open_time: datetime.time
    close_time: datetime.time
    enabled: bool = True


def _dispatch_http_error(exc: DispatchError) -> HTTPException:
    detail: dict[str, Any] = {"error": exc.error, "message": exc.message}
    if isinstance(exc, PublishError):
        detail["cmd_log_id"] = exc.cmd_log_id
    return HTTPException(status_code=exc.status_code, detail=detail)


# =============================================================================
# App factory
# =============================================================================

def create_app(hub: DoorlockHub) -> FastAPI:
    app = FastAPI(
        title="Doorlock Hub",
        version="1.0.0",
        description="Door command dispatch, schedules and device health over MQTT",
    )
    app.state.hub = hub

    @app.get("/health")
    async def service_health():
        """Liveness of this service (not of the doors)."""
        return {"status": "ok", "timestamp": datetime.datetime.now(datetime.UTC).isoformat()}

    @app.get("/api/status")
    async def status():
        return hub.get_stats()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @app.post("/api/send", response_model=SendCommandResponse)
    async def send_command(body: SendCommandRequest):
        try:
            result = await hub.pipeline.dispatch(body.door_id, body.command)
        except DispatchError as e:
            raise _dispatch_http_error(e) from e
        return SendCommandResponse(
            ok=True, topic=result.topic, message=result.message, cmd_log_id=result.cmd_log_id
        )

    @app.get("/api/commands")
    async def command_history(
        door_id: int | None = Query(None, gt=0),
        limit: int = Query(100, ge=1, le=1000),
    ):
        return await hub.store.command_history(door_id=door_id, limit=limit)

    @app.get("/api/events")
    async def events():
        return StreamingResponse(
            hub.broadcaster.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    # ------------------------------------------------------------------
    # Registry (read only)
    # ------------------------------------------------------------------

    @app.get("/api/doors")
    async def list_doors():
        return await hub.store.list_doors()

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    @app.get("/api/schedules")
    async def list_schedules(date: datetime.date | None = None):
        rows = await hub.store.list_schedules(date.isoformat() if date else None)
        return [w.to_dict() for w in rows]

    @app.post("/api/schedules/upsert")
    async def upsert_schedule(body: ScheduleUpsertRequest):
        door = await hub.store.door_with_device(body.door_id)
        if door is None:
            raise HTTPException(status_code=404, detail="Door not found")
        window = await hub.store.upsert_schedule(
            door_id=body.door_id,
            schedule_date=body.schedule_date.isoformat(),
            open_time=body.open_time.strftime("%H:%M"),
            close_time=body.close_time.strftime("%H:%M"),
            enabled=body.enabled,
            now=time.time(),
        )
        return window.to_dict()

    @app.delete("/api/schedules/{schedule_id}")
    async def delete_schedule(schedule_id: int):
        deleted = await hub.store.delete_schedule(schedule_id)
        return {"ok": True, "deleted": deleted}

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    @app.get("/api/health")
    async def door_health():
        return await hub.health.liveness()

    @app.get("/api/metrics/downtime-today")
    async def downtime_today():
        return await hub.health.downtime_today()

    @app.get("/api/metrics/ping-count")
    async def ping_count():
        return await hub.health.ping_counts()

    return app
