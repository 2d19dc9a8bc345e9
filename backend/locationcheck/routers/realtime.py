"""WebSocket endpoint for the realtime device channel."""
from fastapi import APIRouter, WebSocket

from ..auth import websocket_token

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/device")
async def device_channel(websocket: WebSocket):
    """Authenticated once at connect; see services.realtime_channel for the protocol."""
    await websocket.app.state.services.realtime.serve(websocket, websocket_token(websocket))
