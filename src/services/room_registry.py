"""In-memory room membership for live sessions.

The registry is only mutated from the event loop thread and never awaits while
mutating, so no lock is needed. Readers get snapshots, so a dispatch iterating
a room is unaffected by concurrent joins and leaves.
"""

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.core.config import settings
from src.core.errors import ConnectionLostError, RoomCapacityError
from src.domain.user import Identity


logger = logging.getLogger(__name__)


@dataclass
class SessionChannel:
    """One live connection: identity plus its bounded outbound queue."""

    identity: Identity
    outbox_size: int = 256
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    client_host: str | None = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_seen: float = field(default_factory=time.monotonic)
    closed: bool = False
    queue: asyncio.Queue[dict[str, Any]] = field(init=False)

    def __post_init__(self) -> None:
        self.queue = asyncio.Queue(maxsize=self.outbox_size)

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    def offer(self, frame: dict[str, Any]) -> bool:
        """Enqueue a frame without waiting. Returns False if the session can't take it."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("session_outbox_full", extra={"session_id": self.session_id, "user_id": self.user_id})
            self.closed = True
            return False
        return True

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_seen


class RoomRegistry:
    """Maps rooms to sessions and sessions to rooms."""

    def __init__(self, *, max_sessions_per_room: int | None = None) -> None:
        self._max_per_room = max_sessions_per_room or settings.max_sessions_per_room
        self._channels: dict[str, SessionChannel] = {}
        self._members: dict[str, set[str]] = defaultdict(set)
        self._rooms_of: dict[str, set[str]] = defaultdict(set)

    # -------------------------------------------------------------- sessions

    def register(self, channel: SessionChannel) -> None:
        self._channels[channel.session_id] = channel
        logger.info(
            "session_registered",
            extra={"session_id": channel.session_id, "user_id": channel.user_id, "role": channel.identity.role},
        )

    def unregister(self, session_id: str) -> set[str]:
        """Drop a session and all its memberships; returns the rooms it was in."""
        channel = self._channels.pop(session_id, None)
        rooms = self._rooms_of.pop(session_id, set())
        for room in rooms:
            members = self._members.get(room)
            if members is not None:
                members.discard(session_id)
                if not members:
                    del self._members[room]
        if channel is not None:
            channel.closed = True
            logger.info(
                "session_unregistered",
                extra={"session_id": session_id, "user_id": channel.user_id, "rooms": len(rooms)},
            )
        return rooms

    def channel(self, session_id: str) -> SessionChannel | None:
        return self._channels.get(session_id)

    def channels(self) -> list[SessionChannel]:
        return list(self._channels.values())

    def sessions_for_user(self, user_id: str) -> list[SessionChannel]:
        return [c for c in self._channels.values() if c.user_id == user_id]

    # ----------------------------------------------------------- membership

    def join(self, session_id: str, room: str) -> bool:
        """Add a session to a room. Idempotent; returns True if it was not a member yet.

        Raises:
            ConnectionLostError: If the session is not registered
            RoomCapacityError: If the room is full
        """
        if session_id not in self._channels:
            raise ConnectionLostError(f"Session {session_id} is not connected", session_id=session_id)

        members = self._members[room]
        if session_id in members:
            return False
        if len(members) >= self._max_per_room:
            if not members:
                del self._members[room]
            raise RoomCapacityError(f"Room {room} is full", room=room, limit=self._max_per_room)

        members.add(session_id)
        self._rooms_of[session_id].add(room)
        logger.debug("room_joined", extra={"session_id": session_id, "room": room})
        return True

    def leave(self, session_id: str, room: str) -> bool:
        """Remove a session from a room. Idempotent; returns True if it was a member."""
        members = self._members.get(room)
        if not members or session_id not in members:
            return False
        members.discard(session_id)
        if not members:
            del self._members[room]
        rooms = self._rooms_of.get(session_id)
        if rooms is not None:
            rooms.discard(room)
        logger.debug("room_left", extra={"session_id": session_id, "room": room})
        return True

    def is_member(self, session_id: str, room: str) -> bool:
        return session_id in self._members.get(room, ())

    def members(self, room: str) -> frozenset[str]:
        return frozenset(self._members.get(room, ()))

    def rooms_of(self, session_id: str) -> frozenset[str]:
        return frozenset(self._rooms_of.get(session_id, ()))

    def room_sizes(self) -> dict[str, int]:
        return {room: len(members) for room, members in self._members.items()}

    def stats(self) -> dict[str, int]:
        return {
            "sessions": len(self._channels),
            "rooms": len(self._members),
            "users": len({c.user_id for c in self._channels.values()}),
        }
