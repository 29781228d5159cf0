"""
WebSocket endpoint for real-time room updates.

Clients connect to ``/ws/rooms`` with any of ``restaurant_id``, ``session_id``
and ``table_id`` as query parameters and are placed in the matching rooms.
After that they may send:

  * ``ping`` (plain text) or ``{"event": "ping"}``
  * ``{"event": "join", "rooms": ["session:12"]}``
  * ``{"event": "leave", "rooms": ["session:12"]}``
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from qrdine.services.realtime import (
    EventType,
    RealtimeMessage,
    RoomConnectionManager,
    restaurant_room,
    session_room,
    table_room,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/rooms")
async def rooms_websocket(
    websocket: WebSocket,
    restaurant_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    table_id: Optional[int] = Query(None),
):
    manager: RoomConnectionManager = websocket.app.state.event_bus

    rooms = []
    if restaurant_id:
        rooms.append(restaurant_room(restaurant_id))
    if session_id:
        rooms.append(session_room(session_id))
    if table_id:
        rooms.append(table_room(table_id))

    await manager.connect(websocket, rooms)
    try:
        while True:
            raw = await websocket.receive_text()
            if raw == "ping":
                await websocket.send_text("pong")
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_personal(websocket, RealtimeMessage(
                    event=EventType.ERROR, data={"message": "Invalid JSON"}
                ))
                continue
            if not isinstance(message, dict):
                continue

            event = message.get("event")
            requested = message.get("rooms") or []
            if not isinstance(requested, list):
                requested = [requested]

            if event == "ping":
                await manager.send_personal(websocket, RealtimeMessage(event=EventType.PONG, data={}))
            elif event == "join":
                joined = manager.join(websocket, [str(r) for r in requested])
                await manager.send_personal(websocket, RealtimeMessage(
                    event=EventType.JOINED, data={"rooms": joined}
                ))
            elif event == "leave":
                left = manager.leave(websocket, [str(r) for r in requested])
                await manager.send_personal(websocket, RealtimeMessage(
                    event=EventType.LEFT, data={"rooms": left}
                ))
            else:
                await manager.send_personal(websocket, RealtimeMessage(
                    event=EventType.ERROR, data={"message": f"Unknown event: {event}"}
                ))
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
        manager.disconnect(websocket)
