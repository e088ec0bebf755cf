from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse, StreamingResponse

from .events import EventLog
from .integrations import executable_status
from .schemas import (
    CancelResponse,
    EventResponse,
    RunSubmitRequest,
    RunSubmitResponse,
    RuntimeConfigResponse,
    RuntimeConfigUpdateRequest,
    SessionPatchRequest,
    SessionResponse,
)
from .service_container import Services
from .types import ConfirmPresenter


def _fixed_confirm(answer: bool) -> ConfirmPresenter:
    async def confirm(_message: str) -> bool:
        return answer

    return confirm


def _session_response(services: Services) -> SessionResponse:
    return SessionResponse(**services.controller.snapshot())


async def event_stream(events: EventLog, since_id: int = 0, *, poll_interval: float = 0.2) -> AsyncIterator[str]:
    """Server-sent event frames for everything logged after `since_id`, with a ping when idle."""

    last_id = since_id
    while True:
        batch = events.list_events(after_id=last_id, limit=200)
        if batch:
            for event in batch:
                last_id = event.id
                payload = json.dumps(asdict(event))
                yield f"id: {last_id}\nevent: {event.type}\ndata: {payload}\n\n"
        else:
            yield ": ping\n\n"
        await asyncio.sleep(poll_interval)


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="BigZip Backend", version="0.1.0")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await services.controller.shutdown()
        await services.dispatcher.stop()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/health/integrations")
    async def health_integrations() -> dict[str, Any]:
        return executable_status(services.runtime_config.get())

    @app.get("/v1/runtime/config", response_model=RuntimeConfigResponse)
    async def get_runtime_config() -> RuntimeConfigResponse:
        return RuntimeConfigResponse(**services.runtime_config.public_view())

    @app.patch("/v1/runtime/config", response_model=RuntimeConfigResponse)
    async def patch_runtime_config(request: RuntimeConfigUpdateRequest) -> RuntimeConfigResponse:
        services.runtime_config.update(
            executable_name=request.executable_name,
            executable_dir=request.executable_dir,
            clear_executable_dir=request.clear_executable_dir,
            progress_interval_ms=request.progress_interval_ms,
            default_factor=request.default_factor,
            default_fill_pattern=request.default_fill_pattern,
        )
        return RuntimeConfigResponse(**services.runtime_config.public_view())

    @app.get("/v1/session", response_model=SessionResponse)
    async def get_session() -> SessionResponse:
        return _session_response(services)

    @app.patch("/v1/session", response_model=SessionResponse)
    async def patch_session(request: SessionPatchRequest) -> SessionResponse:
        controller = services.controller
        # Order matters: the input drives output and mode, explicit values then override them.
        if request.input_path is not None:
            controller.set_input_path(request.input_path)
        if request.output_path is not None:
            controller.set_output_path(request.output_path)
        if request.decompress is not None:
            controller.set_decompress(request.decompress)
        if request.factor is not None:
            controller.set_factor(request.factor)
        if request.fill_pattern is not None:
            controller.set_fill_pattern(request.fill_pattern)
        return _session_response(services)

    @app.post("/v1/session/run", response_model=RunSubmitResponse)
    async def run_or_cancel(request: RunSubmitRequest) -> RunSubmitResponse:
        controller = services.controller
        if not controller.in_flight:
            controller.collaborators.confirm = _fixed_confirm(request.overwrite) if request.overwrite is not None else None
        status = controller.start()
        return RunSubmitResponse(status=status, session=_session_response(services))

    @app.post("/v1/session/cancel", response_model=CancelResponse)
    async def cancel_run() -> CancelResponse:
        cancelled = services.controller.cancel()
        return CancelResponse(cancelled=cancelled, session=_session_response(services))

    @app.get("/v1/session/events", response_model=list[EventResponse])
    async def list_events(
        after_id: int = Query(default=0, ge=0),
        limit: int = Query(default=200, ge=1, le=1000),
    ) -> list[EventResponse]:
        return [EventResponse(**asdict(event)) for event in services.events.list_events(after_id=after_id, limit=limit)]

    @app.get("/v1/session/events/stream")
    async def stream_events(since_id: int = Query(default=0, ge=0)) -> StreamingResponse:
        return StreamingResponse(event_stream(services.events, since_id), media_type="text/event-stream")

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app
