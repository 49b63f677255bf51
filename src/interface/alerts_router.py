"""Emergency alerts raised by collectors in the field."""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.core.config import Constants
from src.core.rate_limiter import RateLimitTier
from src.domain.user import Identity
from src.interface.dependencies import general_rate_limit, get_engine, rate_limited
from src.services.engine import SyncEngine


router = APIRouter(prefix="/api/alerts", tags=["alerts"], dependencies=[Depends(general_rate_limit)])


class EmergencyAlertRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=Constants.MAX_NOTIFICATION_MESSAGE_LENGTH)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


@router.post("/emergency", status_code=status.HTTP_201_CREATED)
async def raise_emergency(
    body: EmergencyAlertRequest,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    event = await engine.raise_emergency(
        reporter=identity, message=body.message, latitude=body.latitude, longitude=body.longitude
    )
    return {"success": True, "data": {"eventId": event.event_id}}
