"""WebSocket session gateway.

Each connection is authenticated at handshake, registered with the room
registry, auto-joined to its standing rooms (``user:``, ``role:`` and, when the
user has coordinates, ``area:``), and then served by two tasks: the receive loop
handling client events, and a writer draining the session's outbound queue.

Client frames look like ``{"event": "join_room", "data": {...}}``. Supported
events: ``join_room``, ``leave_room``, ``send_message`` and ``ping``.
"""

import asyncio
import contextlib
import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from src.core import db_client
from src.core.config import Constants, settings
from src.core.errors import (
    AuthenticationError,
    EngineError,
    InvalidRequestError,
    RateLimitedError,
    UnauthorizedError,
    classify_error_with_response,
)
from src.core.logging import log_with_session_context, span
from src.core.rate_limiter import RateLimitTier
from src.domain.chat import MessageKind
from src.domain.rooms import area_room, normalize_room, role_room, user_room
from src.domain.user import Identity
from src.services.engine import SyncEngine
from src.services.room_registry import SessionChannel


logger = logging.getLogger(__name__)


class JoinRoomRequest(BaseModel):
    room: str = Field(..., min_length=1, max_length=200)


class SendMessageRequest(BaseModel):
    room: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=Constants.MAX_CHAT_MESSAGE_LENGTH)
    type: MessageKind = MessageKind.TEXT
    client_id: str | None = Field(default=None, alias="clientId", max_length=100)

    model_config = {"populate_by_name": True}


def _extract_credentials(websocket: WebSocket) -> tuple[str, str | None]:
    token = websocket.query_params.get("token", "")
    if not token:
        header = websocket.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
    claimed = websocket.query_params.get("userId") or websocket.query_params.get("user_id")
    return token, claimed


def _room_from(data: Any) -> str:
    if isinstance(data, str):
        return data
    return JoinRoomRequest.model_validate(data or {}).room


def _rate_key(channel: SessionChannel) -> str:
    # Same address key the REST tiers use
    return channel.client_host or "unknown"


class SessionGateway:
    """Serves realtime sessions for one engine."""

    def __init__(
        self,
        engine: SyncEngine,
        *,
        heartbeat_timeout_seconds: int | None = None,
        outbox_size: int | None = None,
        backfill_limit: int | None = None,
    ) -> None:
        self.engine = engine
        self._timeout = heartbeat_timeout_seconds or settings.heartbeat_timeout_seconds
        self._outbox_size = outbox_size or settings.session_outbox_size
        self._backfill_limit = backfill_limit or settings.chat_backfill_limit
        self._sockets: dict[str, WebSocket] = {}

    # ------------------------------------------------------------ lifecycle

    async def serve(self, websocket: WebSocket) -> None:
        """Run one session from handshake to disconnect."""
        await websocket.accept()
        client_host = websocket.client.host if websocket.client else "unknown"

        identity = await self._handshake(websocket, client_host)
        if identity is None:
            return

        channel = SessionChannel(identity=identity, outbox_size=self._outbox_size, client_host=client_host)
        writer = asyncio.create_task(self._writer(websocket, channel))
        try:
            self.engine.registry.register(channel)
            self._sockets[channel.session_id] = websocket
            rooms = self._join_standing_rooms(channel)
            channel.offer(
                {
                    "event": "session_ready",
                    "data": {"sessionId": channel.session_id, "userId": identity.user_id, "rooms": rooms},
                }
            )
            while True:
                raw = await websocket.receive_text()
                channel.touch()
                await self._handle_frame(channel, raw)
        except WebSocketDisconnect as e:
            log_with_session_context(
                logger, "info", "session_disconnected", channel.session_id, identity.user_id, code=e.code
            )
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            await self._drop(channel.session_id)

    async def _handshake(self, websocket: WebSocket, client_host: str) -> Identity | None:
        token, claimed = _extract_credentials(websocket)
        limiter = self.engine.rate_limiter
        try:
            await limiter.ensure_not_blocked(RateLimitTier.AUTH, client_host)
            identity = await self.engine.auth.verify_session(token)
            if claimed and claimed != identity.user_id:
                raise AuthenticationError("Token does not match the claimed user")
        except RateLimitedError as e:
            await self._reject(websocket, e, Constants.WS_CLOSE_RATE_LIMITED)
            return None
        except AuthenticationError as e:
            await limiter.record_failure(RateLimitTier.AUTH, client_host)
            logger.warning("ws_auth_failed", extra={"client_host": client_host, "reason": e.message})
            await self._reject(websocket, e, Constants.WS_CLOSE_AUTH_FAILED)
            return None
        return identity

    async def _reject(self, websocket: WebSocket, error: EngineError, code: int) -> None:
        response = classify_error_with_response(error)
        with contextlib.suppress(WebSocketDisconnect, RuntimeError, OSError):
            await websocket.send_json({"event": "error", "data": response.model_dump(mode="json")})
            await websocket.close(code=code, reason=response.code)

    def _join_standing_rooms(self, channel: SessionChannel) -> list[str]:
        identity = channel.identity
        rooms = [user_room(identity.user_id), role_room(identity.role)]
        if identity.coordinates is not None:
            rooms.append(area_room(*identity.coordinates, precision=self.engine.area_precision))
        for room in rooms:
            self.engine.registry.join(channel.session_id, room)
        return rooms

    async def _writer(self, websocket: WebSocket, channel: SessionChannel) -> None:
        try:
            while True:
                frame = await channel.queue.get()
                await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            channel.closed = True
            log_with_session_context(
                logger, "warning", "session_writer_stopped", channel.session_id, channel.user_id, error=str(e)
            )

    async def _drop(self, session_id: str) -> None:
        channel = self.engine.registry.channel(session_id)
        self._sockets.pop(session_id, None)
        if channel is None:
            return
        self.engine.registry.unregister(session_id)
        await self.engine.session_closed(channel.identity)

    async def reap_dead_sessions(self) -> int:
        """Close sessions that missed their heartbeat or whose outbox overflowed."""
        with span("session_gateway.reap_dead_sessions"):
            reaped = 0
            for channel in self.engine.registry.channels():
                if not channel.closed and channel.idle_seconds() <= self._timeout:
                    continue
                websocket = self._sockets.get(channel.session_id)
                code = Constants.WS_CLOSE_IDLE
                await self._drop(channel.session_id)
                if websocket is not None:
                    with contextlib.suppress(WebSocketDisconnect, RuntimeError, OSError):
                        await websocket.close(code=code, reason="session reaped")
                reaped += 1
            if reaped:
                logger.info("dead_sessions_reaped", extra={"count": reaped})
            return reaped

    # --------------------------------------------------------- client events

    async def _handle_frame(self, channel: SessionChannel, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            self._send_error(channel, InvalidRequestError("Frames must be JSON objects"), event=None)
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            self._send_error(channel, InvalidRequestError("Frames need an 'event' name"), event=None)
            return

        event = frame["event"]
        data = frame.get("data")
        try:
            match event:
                case "ping":
                    channel.offer({"event": "pong", "data": {"timestamp": datetime.now(UTC).isoformat()}})
                case "join_room":
                    await self.join_room(channel, _room_from(data))
                case "leave_room":
                    self.leave_room(channel, _room_from(data))
                case "send_message":
                    await self.send_message(channel, SendMessageRequest.model_validate(data or {}))
                case _:
                    raise InvalidRequestError(f"Unknown event: {event}", event=event)
        except EngineError as e:
            self._send_error(channel, e, event=event)
        except ValidationError as e:
            errors = e.errors(include_url=False, include_context=False)
            self._send_error(channel, InvalidRequestError("Invalid payload", errors=errors), event=event)
        except ValueError as e:
            self._send_error(channel, InvalidRequestError(str(e)), event=event)
        except db_client.DatabaseError as e:
            log_with_session_context(
                logger, "error", "session_frame_failed", channel.session_id, channel.user_id, event=event, error=str(e)
            )
            self._send_error(channel, e, event=event)

    def _send_error(self, channel: SessionChannel, error: Exception, event: str | None) -> None:
        response = classify_error_with_response(error)
        payload = response.model_dump(mode="json")
        payload["event"] = event
        channel.offer({"event": "error", "data": payload})

    async def join_room(self, channel: SessionChannel, room: str) -> str:
        """Authorize and join a room, then backfill its recent history."""
        identity = channel.identity
        await self.engine.rate_limiter.check(RateLimitTier.READ, _rate_key(channel))

        room = await self.engine.authorize_room(identity, room)
        self.engine.registry.join(channel.session_id, room)
        history = await self.engine.chat.recent_messages(room, limit=self._backfill_limit)
        channel.offer(
            {"event": "room_joined", "data": {"room": room, "messages": [m.to_wire() for m in history]}}
        )
        log_with_session_context(logger, "info", "room_join_accepted", channel.session_id, identity.user_id, room=room)
        return room

    def leave_room(self, channel: SessionChannel, room: str) -> str:
        room = normalize_room(room, self.engine.area_precision)
        self.engine.registry.leave(channel.session_id, room)
        channel.offer({"event": "room_left", "data": {"room": room}})
        return room

    async def send_message(self, channel: SessionChannel, request: SendMessageRequest) -> None:
        """Persist a message, fan it out to the room, and acknowledge the sender."""
        identity = channel.identity
        await self.engine.rate_limiter.check(RateLimitTier.WRITE, _rate_key(channel))

        room = normalize_room(request.room, self.engine.area_precision)
        if not self.engine.registry.is_member(channel.session_id, room):
            raise UnauthorizedError("Join the room before posting to it", room=room)

        message = await self.engine.post_chat_message(
            sender=identity,
            room=room,
            body=request.message,
            kind=request.type,
            client_id=request.client_id,
            sender_session_id=channel.session_id,
        )
        channel.offer({"event": "message_sent", "data": {"clientId": request.client_id, "message": message.to_wire()}})
