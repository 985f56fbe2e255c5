"""
Control API for streamdelay.

FastAPI application exposing the controller to operator tooling:

- ``GET /status``   current status
- ``PATCH /status`` censor/uncensor and start/stop, returns the new status
- ``WS /ws``        status pushed on every change; incoming messages are
  handled like PATCH bodies

Every route requires the API key, passed either in the ``streamdelay-api-key``
header or the ``key`` query parameter.
"""

from __future__ import annotations

import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from uvicorn import Config, Server

from streamdelay.runtime.controller import StreamController
from streamdelay.runtime.states import ControlEvent, Snapshot

logger = logging.getLogger(__name__)

API_KEY_HEADER = "streamdelay-api-key"
API_KEY_QUERY = "key"


class StatusResponse(BaseModel):
    delaySeconds: float
    restartSeconds: float
    isCensored: bool
    isStreamRunning: bool
    startTime: int | None
    state: dict[str, Any]
    error: str | None = None


class PatchStateRequest(BaseModel):
    isCensored: bool | None = None
    isStreamRunning: bool | None = None

    def events(self) -> list[ControlEvent]:
        """Control events for this patch, censorship first."""
        events = []
        if self.isCensored is not None:
            events.append(ControlEvent.CENSOR if self.isCensored else ControlEvent.UNCENSOR)
        if self.isStreamRunning is not None:
            events.append(ControlEvent.START if self.isStreamRunning else ControlEvent.STOP)
        return events


def check_api_key(provided: str | None, expected: str) -> tuple[int, str] | None:
    """Return ``(status_code, error)`` when ``provided`` is not accepted."""
    if not provided:
        return status.HTTP_400_BAD_REQUEST, "missing api key"
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        return status.HTTP_403_FORBIDDEN, "invalid api key"
    return None


def _provided_key(connection: Request | WebSocket) -> str | None:
    return connection.headers.get(API_KEY_HEADER) or connection.query_params.get(API_KEY_QUERY)


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Rejects HTTP requests without a valid API key."""

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next):
        rejection = check_api_key(_provided_key(request), self.api_key)
        if rejection is not None:
            code, error = rejection
            logger.warning("Rejected %s %s: %s", request.method, request.url.path, error)
            return JSONResponse(status_code=code, content={"ok": False, "error": error})
        return await call_next(request)


def format_status(snapshot: Snapshot) -> dict[str, Any]:
    return StatusResponse(**snapshot.to_status()).model_dump()


def create_app(controller: StreamController, api_key: str, *, autostart: bool = False) -> FastAPI:
    """
    Build the API application around ``controller``.

    The controller is started and closed by the application lifespan. With
    ``autostart`` a START is sent as soon as the controller is running.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with controller:
            if autostart:
                controller.send(ControlEvent.START)
            yield

    app = FastAPI(title="streamdelay", lifespan=lifespan)
    app.add_middleware(ApiKeyMiddleware, api_key=api_key)
    app.state.controller = controller

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        return format_status(controller.get_snapshot())

    @app.patch("/status", response_model=StatusResponse)
    async def patch_status(patch: PatchStateRequest):
        snapshot = controller.get_snapshot()
        for event in patch.events():
            snapshot = await controller.request(event)
        return format_status(snapshot)

    @app.websocket("/ws")
    async def websocket_status(websocket: WebSocket):
        rejection = check_api_key(_provided_key(websocket), api_key)
        if rejection is not None:
            logger.warning("Rejected websocket connection: %s", rejection[1])
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()

        async def push(snapshot: Snapshot) -> None:
            await websocket.send_json({"type": "status", "status": format_status(snapshot)})

        # The subscription delivers the current status first
        unsubscribe = controller.subscribe(push)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
                # Text and binary frames carry the same JSON body
                data = message.get("text")
                if data is None:
                    data = message.get("bytes") or b""
                try:
                    patch = PatchStateRequest.model_validate(json.loads(data))
                except (ValueError, ValidationError):
                    logger.warning("Received unexpected ws data: %r", data)
                    continue
                for event in patch.events():
                    controller.send(event)
        except WebSocketDisconnect:
            logger.debug("Websocket client disconnected")
        finally:
            unsubscribe()

    return app


async def serve(app: FastAPI, host: str, port: int) -> None:
    """Run ``app`` with uvicorn until it is asked to shut down."""
    config = Config(app, host=host, port=port, log_level="info", log_config=None)
    server = Server(config)
    logger.info("Server listening at http://%s:%d", host, port)
    await server.serve()
