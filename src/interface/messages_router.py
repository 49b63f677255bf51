"""Chat history endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from src.core.config import Constants
from src.core.rate_limiter import RateLimitTier
from src.domain.user import Identity
from src.interface.dependencies import general_rate_limit, get_engine, rate_limited
from src.services.engine import SyncEngine


router = APIRouter(prefix="/api/messages", tags=["messages"], dependencies=[Depends(general_rate_limit)])


@router.get("")
async def room_messages(
    room: str = Query(..., min_length=1, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=Constants.DEFAULT_MESSAGES_PER_PAGE, ge=1, le=Constants.MAX_MESSAGES_PER_PAGE),
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Page through a room's history, oldest first within the page.

    The same authorization as joining the room applies.
    """
    room = await engine.authorize_room(identity, room)
    result = await engine.chat.get_room_messages(room, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "room": result.room,
            "messages": [m.to_wire() for m in result.messages],
            "pagination": result.pagination.model_dump(),
        },
    }
