"""Chat message persistence and room history."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from src.core import db_client
from src.core.config import Constants, settings
from src.core.errors import InvalidRequestError, UnauthorizedError
from src.core.logging import span
from src.domain.chat import ChatMessage, MessageKind
from src.domain.user import Identity
from src.models.service_models import MessagePage, Pagination


logger = logging.getLogger(__name__)

MESSAGES = "chat_messages"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ChatService:
    """Stores chat messages and serves newest-bounded history pages."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    async def post_message(
        self,
        *,
        sender: Identity,
        room: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        client_id: str | None = None,
    ) -> ChatMessage:
        """Persist a message. It is durable before anyone is told about it."""
        with span("chat_service.post_message"):
            text = body.strip()
            if not text:
                raise InvalidRequestError("Message cannot be empty", field="message")
            if len(text) > Constants.MAX_CHAT_MESSAGE_LENGTH:
                raise InvalidRequestError(
                    f"Message must be at most {Constants.MAX_CHAT_MESSAGE_LENGTH} characters", field="message"
                )
            if kind == MessageKind.SYSTEM and not sender.is_admin:
                raise UnauthorizedError("Only admins can post system messages", room=room)

            record = await db_client.create_record(
                collection=MESSAGES,
                data={
                    "room": room,
                    "sender_id": sender.user_id,
                    "sender_name": sender.name,
                    "sender_role": sender.role,
                    "body": text,
                    "kind": kind,
                    "client_id": client_id,
                    "timestamp": self._clock(),
                },
            )
            message = ChatMessage(**record)
            logger.info(
                "chat_message_persisted",
                extra={"message_id": message.id, "room": room, "sender_id": sender.user_id},
            )
            return message

    async def get_room_messages(
        self,
        room: str,
        *,
        page: int = 1,
        limit: int = Constants.DEFAULT_MESSAGES_PER_PAGE,
    ) -> MessagePage:
        """One page of history. Page 1 holds the newest messages; each page is oldest first."""
        with span("chat_service.get_room_messages"):
            limit = max(1, min(limit, Constants.MAX_MESSAGES_PER_PAGE))
            page = max(page, 1)
            filter_query = f'room = "{db_client.sanitize_param(room)}"'

            records = await db_client.list_records(
                collection=MESSAGES,
                filter_query=filter_query,
                sort="-timestamp,-id",
                page=page,
                per_page=limit,
            )
            total = await db_client.count_records(collection=MESSAGES, filter_query=filter_query)

            messages = [ChatMessage(**record) for record in reversed(records)]
            return MessagePage(
                room=room,
                messages=messages,
                pagination=Pagination.build(page=page, limit=limit, total=total),
            )

    async def recent_messages(self, room: str, *, limit: int | None = None) -> list[ChatMessage]:
        """Backfill for a session that just joined a room."""
        page = await self.get_room_messages(room, page=1, limit=limit or settings.chat_backfill_limit)
        return page.messages
