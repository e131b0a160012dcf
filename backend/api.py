"""FastAPI command surface and event stream for the session core.

Every route forwards to one SessionController command and returns its Outcome.
All routes are async so commands run on the event loop that owns the core.
"""

import asyncio
import base64
import binascii
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from config import create_session_controller, get_config
from domain.errors import ErrorKind, InvalidArgument, Outcome
from mappers import event_to_message, outcome_to_dto
from models import (
    ApiKeyBody,
    AudioChunkBody,
    AutoSuggestBody,
    AutoSuggestConfigBody,
    HealthOut,
    KeyPointBody,
    TriggerActionBody,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.INVALID_ARGUMENT: 422,
}

EVENT_QUEUE_SIZE = 1000


def _respond(outcome: Outcome) -> JSONResponse:
    status = STATUS_BY_ERROR.get(outcome.error, 200)
    if not outcome.ok:
        logger.info(f"Command failed ({status}): {outcome.error.value} - {outcome.detail}")
    return JSONResponse(status_code=status, content=outcome_to_dto(outcome).model_dump())


def create_app(controller=None) -> FastAPI:
    if controller is None:
        controller = create_session_controller(get_config())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, stopping any live session")
        await controller.shutdown()

    app = FastAPI(title="cuecard", lifespan=lifespan)
    app.state.controller = controller

    @app.get("/health", response_model=HealthOut)
    async def health():
        return HealthOut(status="ok", state=controller.state.value, config=get_config().as_dict())

    # -- session ------------------------------------------------------------

    @app.post("/v1/session/start")
    async def start_session():
        return _respond(await controller.start())

    @app.post("/v1/session/stop")
    async def stop_session():
        return _respond(await controller.stop())

    @app.post("/v1/session/toggle-pause")
    async def toggle_pause():
        return _respond(await controller.toggle_pause())

    @app.get("/v1/session/state")
    async def session_state():
        return _respond(controller.get_state())

    # -- context ------------------------------------------------------------

    @app.get("/v1/context/snapshot")
    async def context_snapshot(
        last_n: Optional[int] = Query(None),
        since_ms: Optional[float] = Query(None),
        until_ms: Optional[float] = Query(None),
        final_only: bool = Query(False),
    ):
        return _respond(controller.get_snapshot(
            last_n=last_n, since_ms=since_ms, until_ms=until_ms, final_only=final_only,
        ))

    @app.post("/v1/context/key-points")
    async def add_key_point(body: KeyPointBody):
        return _respond(controller.add_key_point(body.text, body.metadata))

    @app.post("/v1/context/clear")
    async def clear_context():
        return _respond(controller.clear())

    # -- AI -----------------------------------------------------------------

    @app.post("/v1/ai/trigger")
    async def trigger_action(body: TriggerActionBody):
        return _respond(controller.trigger_action(body.action_type, body.metadata, body.mock_context))

    @app.put("/v1/auto-suggest")
    async def set_auto_suggest(body: AutoSuggestBody):
        return _respond(controller.set_auto_suggest(body.enabled))

    @app.put("/v1/auto-suggest/config")
    async def set_auto_suggest_config(body: AutoSuggestConfigBody):
        return _respond(controller.set_auto_suggest_config(**body.model_dump(exclude_none=True)))

    @app.put("/v1/keys/{provider}")
    async def set_api_key(provider: str, body: ApiKeyBody):
        return _respond(controller.set_api_key(provider, body.key))

    # -- audio --------------------------------------------------------------

    @app.post("/v1/audio/chunk")
    async def submit_audio(body: AudioChunkBody):
        try:
            payload = base64.b64decode(body.payload, validate=True)
        except (binascii.Error, ValueError):
            return _respond(Outcome.from_error(InvalidArgument("payload is not valid base64")))
        return _respond(controller.submit_audio(body.source, payload, body.sequence, body.timestamp))

    @app.post("/v1/audio/{source}/start")
    async def start_source(source: str):
        return _respond(controller.start_source(source))

    @app.post("/v1/audio/{source}/stop")
    async def stop_source(source: str):
        return _respond(controller.stop_source(source))

    # -- events -------------------------------------------------------------

    @app.websocket("/v1/events")
    async def events(websocket: WebSocket):
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

        def forward(kind, payload):
            try:
                queue.put_nowait(event_to_message(kind, payload))
            except asyncio.QueueFull:
                logger.warning(f"Event queue full, dropping {kind.value}")

        async def drain():
            while True:
                await websocket.send_json(await queue.get())

        unsubscribe = controller.bus.subscribe_all(forward)
        sender = asyncio.create_task(drain())
        logger.info("Event stream client connected")
        try:
            # Inbound messages are ignored; receiving only detects the disconnect.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Event stream client disconnected")
        finally:
            unsubscribe()
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                await sender

    return app
