"""
Real-time event bus.

Room-scoped broadcasting over WebSockets. Rooms are named ``restaurant:{id}``
(staff dashboard), ``session:{id}`` (every diner device at a table) and
``table:{id}``. Services publish from synchronous request handlers running in
the threadpool; delivery is scheduled on the server event loop and never
blocks or raises into the caller.
"""
import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Optional, Protocol, Set

from fastapi import Depends, Request, WebSocket

from qrdine.core.config import settings

logger = logging.getLogger(__name__)

ROOM_PATTERN = re.compile(r"^(restaurant|session|table):\d+$")


class EventType(str, Enum):
    """Real-time event names"""
    # Connection events
    CONNECTED = "connected"
    PONG = "pong"
    JOINED = "joined"
    LEFT = "left"
    ERROR = "error"

    # Domain events
    CART_UPDATE = "cart_update"
    ORDER_UPDATE = "order_update"
    ORDER_STATUS_CHANGED = "order_status_changed"
    PAYMENT_STATUS_CHANGED = "payment_status_changed"
    TABLE_STATUS_CHANGED = "table_status_changed"


def restaurant_room(restaurant_id: int) -> str:
    return f"restaurant:{restaurant_id}"


def session_room(session_id: int) -> str:
    return f"session:{session_id}"


def table_room(table_id: int) -> str:
    return f"table:{table_id}"


def is_valid_room(room: str) -> bool:
    return bool(ROOM_PATTERN.match(room or ""))


@dataclass
class RealtimeMessage:
    """Standard message envelope sent to clients"""
    event: str
    data: Dict[str, Any]
    room: Optional[str] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.event, Enum):
            self.event = self.event.value
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


class EventBus(Protocol):
    """Anything that can fan an event out to a room."""

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        ...


class RoomConnectionManager:
    """
    Manages WebSocket connections grouped into rooms.

    ``publish`` is the synchronous entry point used by services. It hands the
    broadcast to the event loop bound at startup; with no loop bound (CLI
    scripts, tests without a server) the event is dropped and logged.
    """

    def __init__(self, max_connections_per_room: Optional[int] = None):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.connection_info: Dict[WebSocket, Dict[str, Any]] = {}
        self.max_connections_per_room = max_connections_per_room or settings.ws_max_connections_per_room
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Scheduled broadcasts, held until done so they are not garbage collected
        self._pending: Set[Any] = set()
        self.stats = {
            "total_connections": 0,
            "messages_sent": 0,
            "messages_broadcast": 0,
            "events_dropped": 0,
        }

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Remember the server loop so threadpool handlers can schedule sends on it."""
        self._loop = loop

    async def connect(self, websocket: WebSocket, rooms: Iterable[str] = ()) -> List[str]:
        """Accept a new WebSocket connection and join the initial rooms"""
        await websocket.accept()
        self.connection_info[websocket] = {
            "rooms": set(),
            "connected_at": datetime.now(timezone.utc).isoformat(),
        }
        self.stats["total_connections"] += 1

        joined = self.join(websocket, rooms)
        await self.send_personal(websocket, RealtimeMessage(
            event=EventType.CONNECTED,
            data={"message": "Connected to real-time updates", "rooms": joined},
        ))
        logger.info(f"WebSocket connected: rooms={joined}")
        return joined

    def join(self, websocket: WebSocket, rooms: Iterable[str]) -> List[str]:
        """Add a connection to rooms; invalid or full rooms are skipped."""
        info = self.connection_info.setdefault(websocket, {"rooms": set()})
        joined = []
        for room in rooms:
            if not is_valid_room(room):
                logger.debug(f"Ignoring invalid room name: {room!r}")
                continue
            members = self.rooms.setdefault(room, set())
            if websocket not in members and len(members) >= self.max_connections_per_room:
                logger.warning(f"Room {room} is full ({len(members)} connections)")
                continue
            members.add(websocket)
            info["rooms"].add(room)
            joined.append(room)
        return joined

    def leave(self, websocket: WebSocket, rooms: Iterable[str]) -> List[str]:
        info = self.connection_info.get(websocket)
        left = []
        for room in rooms:
            members = self.rooms.get(room)
            if members and websocket in members:
                members.discard(websocket)
                if not members:
                    del self.rooms[room]
                left.append(room)
            if info:
                info["rooms"].discard(room)
        return left

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection from every room"""
        info = self.connection_info.pop(websocket, None)
        if not info:
            return
        self.leave(websocket, list(info["rooms"]))
        logger.info(f"WebSocket disconnected: rooms={sorted(info['rooms'])}")

    async def send_personal(self, websocket: WebSocket, message: RealtimeMessage) -> None:
        """Send message to a specific connection"""
        try:
            await websocket.send_text(message.to_json())
            self.stats["messages_sent"] += 1
        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            self.disconnect(websocket)

    async def broadcast_room(self, room: str, message: RealtimeMessage) -> int:
        """Broadcast message to every connection in a room. Returns deliveries."""
        message.room = room
        connections = self.rooms.get(room, set()).copy()
        if not connections:
            return 0

        payload = message.to_json()
        disconnected = []
        delivered = 0
        for websocket in connections:
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception:
                disconnected.append(websocket)

        # Clean up disconnected
        for ws in disconnected:
            self.disconnect(ws)

        self.stats["messages_broadcast"] += 1
        return delivered

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        """Fire-and-forget broadcast, safe to call from any thread."""
        message = RealtimeMessage(event=event, data=data)
        loop = self._loop
        if loop is None or loop.is_closed():
            self.stats["events_dropped"] += 1
            logger.debug(f"No event loop bound, dropping {message.event} for {room}")
            return

        try:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                future = loop.create_task(self.broadcast_room(room, message))
            else:
                future = asyncio.run_coroutine_threadsafe(self.broadcast_room(room, message), loop)
            self._pending.add(future)
            future.add_done_callback(self._broadcast_done)
        except RuntimeError as e:
            self.stats["events_dropped"] += 1
            logger.warning(f"Could not schedule {message.event} for {room}: {e}")

    def _broadcast_done(self, future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Broadcast failed: {error!r}")

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics"""
        return {
            **self.stats,
            "active_rooms": len(self.rooms),
            "active_connections": len(self.connection_info),
            "loop_bound": self._loop is not None,
            "pending_broadcasts": len(self._pending),
        }


def get_event_bus(request: Request) -> EventBus:
    """FastAPI dependency: the application's event bus."""
    return request.app.state.event_bus


EventBusDep = Annotated[EventBus, Depends(get_event_bus)]


# =============================================================================
# EVENT EMITTERS
# =============================================================================

def emit_cart_update(bus: EventBus, session_id: int, items: List[Dict[str, Any]]) -> None:
    """Full cart snapshot to every device in the session."""
    bus.publish(session_room(session_id), EventType.CART_UPDATE.value, {
        "sessionId": session_id,
        "items": items,
    })


def emit_order_placed(
    bus: EventBus,
    *,
    order_id: int,
    session_id: int,
    restaurant_id: int,
    table_number: str,
    status: str,
    estimated_time: int,
    total_amount: float,
) -> None:
    """New order: diners see it in their session, staff see it on the dashboard."""
    bus.publish(session_room(session_id), EventType.ORDER_UPDATE.value, {
        "orderId": order_id,
        "status": status,
        "estimatedTime": estimated_time,
        "totalAmount": total_amount,
    })
    bus.publish(restaurant_room(restaurant_id), EventType.ORDER_STATUS_CHANGED.value, {
        "orderId": order_id,
        "status": status,
        "tableNumber": table_number,
        "estimatedTime": estimated_time,
        "isNew": True,
    })


def emit_order_status(
    bus: EventBus,
    *,
    order_id: int,
    session_id: int,
    restaurant_id: int,
    table_number: str,
    status: str,
    estimated_time: int,
) -> None:
    bus.publish(session_room(session_id), EventType.ORDER_UPDATE.value, {
        "orderId": order_id,
        "status": status,
        "estimatedTime": estimated_time,
    })
    bus.publish(restaurant_room(restaurant_id), EventType.ORDER_STATUS_CHANGED.value, {
        "orderId": order_id,
        "status": status,
        "tableNumber": table_number,
        "estimatedTime": estimated_time,
    })


def emit_payment_status(
    bus: EventBus,
    *,
    payment_id: int,
    session_id: int,
    restaurant_id: int,
    status: str,
    amount: float,
) -> None:
    data = {
        "paymentId": payment_id,
        "sessionId": session_id,
        "status": status,
        "amount": amount,
    }
    bus.publish(session_room(session_id), EventType.PAYMENT_STATUS_CHANGED.value, data)
    bus.publish(restaurant_room(restaurant_id), EventType.PAYMENT_STATUS_CHANGED.value, dict(data))


def emit_table_status(
    bus: EventBus,
    *,
    restaurant_id: int,
    table_id: int,
    status: str,
    has_active_session: bool,
) -> None:
    """Table state for the dashboard floor plan and the table's own devices."""
    data = {
        "tableId": table_id,
        "status": status,
        "hasActiveSession": has_active_session,
    }
    bus.publish(restaurant_room(restaurant_id), EventType.TABLE_STATUS_CHANGED.value, data)
    bus.publish(table_room(table_id), EventType.TABLE_STATUS_CHANGED.value, dict(data))
