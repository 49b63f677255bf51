"""Chat message models and the two-phase local timeline."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants
from src.domain.task import ensure_utc
from src.domain.user import UserRole


class MessageKind(StrEnum):
    """Chat message kind."""

    TEXT = "text"
    SYSTEM = "system"


class DeliveryState(StrEnum):
    """Local state of a message in a client's timeline."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ChatMessage(BaseModel):
    """A persisted, immutable chat message."""

    id: str = Field(..., description="Server-assigned message ID")
    room: str = Field(..., description="Room the message was posted to")
    sender_id: str
    sender_name: str
    sender_role: UserRole
    body: str = Field(..., max_length=Constants.MAX_CHAT_MESSAGE_LENGTH)
    timestamp: datetime
    kind: MessageKind = MessageKind.TEXT
    client_id: str | None = Field(default=None, description="Sender-chosen id of the provisional copy")

    @field_validator("timestamp")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_wire(self) -> dict[str, object]:
        """Client-facing payload of ``new_message``."""
        return {
            "id": self.id,
            "room": self.room,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "senderRole": self.sender_role.value,
            "message": self.body,
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
            "clientId": self.client_id,
        }


class TimelineEntry(BaseModel):
    """A message as displayed locally, possibly not yet confirmed."""

    key: str
    room: str
    body: str
    sender_id: str
    timestamp: datetime
    state: DeliveryState
    message_id: str | None = None


class ChatTimeline:
    """Local chat timeline that reconciles optimistic sends with server confirmation.

    A sent message appears immediately as PENDING under its client id. When the
    server's ``message_sent`` (or the echoed ``new_message``) arrives it is
    replaced in place by the confirmed copy; if sending fails it is kept and
    marked FAILED so it can be retried.
    """

    def __init__(self, room: str) -> None:
        self.room = room
        self._entries: list[TimelineEntry] = []
        self._by_key: dict[str, TimelineEntry] = {}
        self._confirmed_ids: set[str] = set()

    @property
    def entries(self) -> list[TimelineEntry]:
        return list(self._entries)

    def add_provisional(self, *, client_id: str, sender_id: str, body: str, timestamp: datetime) -> TimelineEntry:
        entry = TimelineEntry(
            key=client_id,
            room=self.room,
            body=body,
            sender_id=sender_id,
            timestamp=timestamp,
            state=DeliveryState.PENDING,
        )
        self._entries.append(entry)
        self._by_key[client_id] = entry
        return entry

    def apply_confirmed(self, message: ChatMessage) -> TimelineEntry:
        """Merge a server message, reconciling with its provisional copy if present."""
        if message.id in self._confirmed_ids:
            existing = next(e for e in self._entries if e.message_id == message.id)
            return existing

        confirmed = TimelineEntry(
            key=message.id,
            room=message.room,
            body=message.body,
            sender_id=message.sender_id,
            timestamp=message.timestamp,
            state=DeliveryState.CONFIRMED,
            message_id=message.id,
        )
        provisional = self._by_key.pop(message.client_id, None) if message.client_id else None
        if provisional is not None:
            index = self._entries.index(provisional)
            self._entries[index] = confirmed
        else:
            self._entries.append(confirmed)
        self._by_key[message.id] = confirmed
        self._confirmed_ids.add(message.id)
        return confirmed

    def mark_failed(self, client_id: str) -> TimelineEntry | None:
        entry = self._by_key.get(client_id)
        if entry is None or entry.state != DeliveryState.PENDING:
            return None
        entry.state = DeliveryState.FAILED
        return entry

    def pending(self) -> list[TimelineEntry]:
        return [e for e in self._entries if e.state == DeliveryState.PENDING]
