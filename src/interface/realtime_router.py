"""WebSocket entry point."""

from fastapi import APIRouter, WebSocket


router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_session(websocket: WebSocket) -> None:
    """Authenticate with ``?token=`` (and optionally ``&userId=``), then exchange event frames."""
    await websocket.app.state.gateway.serve(websocket)
