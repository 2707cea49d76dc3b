"""
Websocket side channel. Clients receive every published event as
{"event", "data", "timestamp"} JSON messages.
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .. import events

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await events.manager.connect(websocket)
    try:
        while True:
            # inbound messages are ignored; receiving keeps the disconnect visible
            await websocket.receive_text()
    except WebSocketDisconnect:
        events.manager.disconnect(websocket)
