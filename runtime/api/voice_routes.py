"""WebSocket routes for the voice relay runtime.

Exposes:

- WS  /ws             -> one-shot session (client records, then sends
                         the whole clip as an `audio` message)
- WS  /continuous-ws  -> continuous session (open microphone streamed as
                         `continuous_audio` between start_call/end_call)
- GET /healthz

Each connection is served by one ConnectionGateway, which owns the
session for the lifetime of the socket.
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from exceptions.exceptions import InvalidSessionException, MalformedMessageException

from ..agents.call_controller import CallController
from ..agents.utterance_accumulator import UtteranceAccumulator
from ..models.api_models import ClientMessage, ErrorEvent, ServerEvent, SessionEvent
from ..models.session_models import SessionMode
from ..store.session_store import SessionStore


logger = logging.getLogger(__name__)

# Router for all voice endpoints
router = APIRouter()


def _require_session_store(app) -> SessionStore:
    store = getattr(app.state, "session_store", None)
    if store is None:
        raise HTTPException(
            status_code=500,
            detail="SessionStore is not configured on the server.",
        )
    return store


# ---------------------------------------------------------------------------
# Framing helpers
# ---------------------------------------------------------------------------


def parse_message(raw: str) -> ClientMessage:
    """Parse one inbound text frame into a ClientMessage."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessageException(f"invalid JSON ({e.msg})") from e

    if not isinstance(data, dict):
        raise MalformedMessageException("expected a JSON object")

    try:
        return ClientMessage.model_validate(data)
    except ValidationError as e:
        raise MalformedMessageException("missing or invalid 'type'/'audio' field") from e


def decode_audio(message: ClientMessage) -> bytes:
    if not message.audio:
        raise MalformedMessageException(f"'{message.type}' message has no audio")
    try:
        return base64.b64decode(message.audio, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedMessageException("audio is not valid base64") from e


# ---------------------------------------------------------------------------
# Per-connection gateway
# ---------------------------------------------------------------------------


class ConnectionGateway:
    """Demultiplexes inbound frames and serializes outbound events for one socket."""

    def __init__(
        self,
        websocket: WebSocket,
        mode: SessionMode,
        session_store: SessionStore,
        accumulator: UtteranceAccumulator,
        call_controller: CallController,
    ) -> None:
        self.websocket = websocket
        self.mode = mode
        self.session_store = session_store
        self.accumulator = accumulator
        self.call_controller = call_controller
        self.session_id: Optional[str] = None
        self._send_lock = asyncio.Lock()
        self._closed = False

    async def serve(self) -> None:
        await self.websocket.accept()
        logger.info("[WS] Client connected (%s)", self.mode.value)

        session = self.session_store.create_session(self.mode)
        self.session_id = session.session_id
        self.accumulator.register(self.session_id, self.send_event)

        try:
            await self.send_event(
                SessionEvent(
                    session_id=self.session_id,
                    is_continuous=self.mode is SessionMode.CONTINUOUS,
                )
            )
            while not self._closed:
                frame = await self.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                await self.handle_frame(frame)
        except WebSocketDisconnect:
            pass
        finally:
            logger.info("[WS] Client disconnected: session_id=%s", self.session_id)
            self.close()

    async def handle_frame(self, frame: dict) -> None:
        try:
            raw = frame.get("text")
            if raw is None:
                try:
                    raw = (frame.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError as e:
                    raise MalformedMessageException("binary frame is not UTF-8 JSON") from e
            await self.dispatch(parse_message(raw))

        except (InvalidSessionException, MalformedMessageException) as e:
            logger.warning("[WS] %s for session_id=%s", e, self.session_id)
            await self.send_event(ErrorEvent(message=str(e)))

        except Exception as e:
            logger.exception("[WS] Unexpected error for session_id=%s", self.session_id)
            await self.send_event(ErrorEvent(message=str(e) or e.__class__.__name__))

    async def dispatch(self, message: ClientMessage) -> None:
        session_id = self.session_id

        if message.type == "audio":
            self._require_session()
            audio = decode_audio(message)
            if not self.accumulator.dispatch(session_id, audio, SessionMode.ONE_SHOT):
                await self.send_event(
                    ErrorEvent(message="Still processing the previous message")
                )

        elif message.type == "continuous_audio":
            self._require_session()
            self.accumulator.append(session_id, decode_audio(message))

        elif message.type == "start_call":
            await self.send_event(self.call_controller.start_call(session_id))

        elif message.type == "end_call":
            event = self.call_controller.end_call(session_id)
            if event is not None:
                await self.send_event(event)

        elif message.type == "end":
            self.end_conversation()

        else:
            logger.warning("[WS] Unknown message type: %r", message.type)

    def end_conversation(self) -> None:
        """Tear the session down; later messages on this socket are rejected."""
        self.call_controller.hang_up(self.session_id)
        self.accumulator.discard(self.session_id)
        if self.session_store.delete_session(self.session_id):
            logger.info("[WS] Conversation ended: %s", self.session_id)

    def close(self) -> None:
        self._closed = True
        if self.session_id is not None:
            self.end_conversation()

    async def send_event(self, event: ServerEvent) -> None:
        """Send one event; events for a closed socket are dropped."""
        if self._closed or self.websocket.client_state == WebSocketState.DISCONNECTED:
            logger.debug("[WS] Dropping %s event for closed connection", event.type)
            return
        async with self._send_lock:
            try:
                await self.websocket.send_json(event.to_wire())
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self._closed = True
                logger.debug("[WS] Could not deliver %s event: %s", event.type, e)

    def _require_session(self) -> None:
        if self.session_store.get_session(self.session_id) is None:
            raise InvalidSessionException(self.session_id)


def _open_gateway(websocket: WebSocket, mode: SessionMode) -> ConnectionGateway:
    """Build a gateway wired to the objects of the app serving this socket."""
    state = websocket.app.state
    accumulator = getattr(state, "accumulator", None)
    call_controller = getattr(state, "call_controller", None)
    if accumulator is None or call_controller is None:
        raise RuntimeError("Voice routes are not configured on the server.")
    return ConnectionGateway(
        websocket=websocket,
        mode=mode,
        session_store=_require_session_store(websocket.app),
        accumulator=accumulator,
        call_controller=call_controller,
    )


# --------------------------------------------------------
# Endpoints
# --------------------------------------------------------


@router.websocket("/ws")
async def one_shot_socket(websocket: WebSocket) -> None:
    await _open_gateway(websocket, SessionMode.ONE_SHOT).serve()


@router.websocket("/continuous-ws")
async def continuous_socket(websocket: WebSocket) -> None:
    await _open_gateway(websocket, SessionMode.CONTINUOUS).serve()


@router.get("/healthz")
def health_check(request: Request):
    """
    Simple health check endpoint for uptime monitoring.
    """
    return {"status": "ok", "sessions": len(_require_session_store(request.app))}
