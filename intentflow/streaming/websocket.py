"""WebSocket outcome streaming with rooms, rate limiting and keepalive."""
import asyncio
import time
from collections import defaultdict
import structlog
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
import orjson
from .notifier import BroadcastResult, NotificationMessage, request_room, user_room

log = structlog.get_logger()


class EventStreamManager:
    """
    Manages WebSocket connections grouped into rooms.

    A connection joins ``user_<id>`` and, when it waits for one specific
    request, ``request_<id>``. Messages are delivered per room.
    """

    def __init__(self):
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._memberships: dict[WebSocket, set[str]] = {}

    async def connect(self, websocket: WebSocket, rooms: list[str]):
        """
        Accept a connection and join it to ``rooms``.

        Args:
            websocket: WebSocket connection to add
            rooms: Room names to join
        """
        await websocket.accept()
        self._memberships[websocket] = set(rooms)
        for room in rooms:
            self._rooms[room].add(websocket)
        log.info("websocket.connected", rooms=rooms, total_connections=self.connection_count)

    def disconnect(self, websocket: WebSocket):
        for room in self._memberships.pop(websocket, set()):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self._rooms[room]
        log.info("websocket.disconnected", total_connections=self.connection_count)

    async def broadcast(self, room: str, payload: dict) -> int:
        """
        Send a message to every connection in a room.

        Returns:
            Number of connections the message was delivered to
        """
        connections = list(self._rooms.get(room, ()))
        if not connections:
            return 0

        message = orjson.dumps(payload)
        delivered = 0
        disconnected = []
        for connection in connections:
            try:
                await connection.send_bytes(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as e:
                log.warning("websocket.send_failed", room=room, error=str(e))
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)
        return delivered

    async def send_ping(self, websocket: WebSocket):
        """Send ping message to keep connection alive."""
        try:
            await websocket.send_json({"type": "ping", "ts": time.time()})
        except (WebSocketDisconnect, RuntimeError) as e:
            log.warning("websocket.ping_failed", error=str(e))

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    @property
    def connection_count(self) -> int:
        return len(self._memberships)


class WebSocketNotifier:
    """Realtime notifier that fans messages out to local WebSocket rooms."""

    def __init__(self, manager: EventStreamManager):
        self.manager = manager

    async def notify(
        self, user_id: str, message: NotificationMessage, request_id: str | None = None
    ) -> BroadcastResult:
        payload = message.to_wire()
        count = await self.manager.broadcast(user_room(user_id), payload)
        if request_id:
            count += await self.manager.broadcast(request_room(request_id), payload)
        return BroadcastResult(success=True, broadcast_count=count)


class RateLimiter:
    """Simple rate limiter for WebSocket messages."""

    def __init__(self, max_messages: int = 100, window_seconds: int = 60):
        """
        Initialize rate limiter.

        Args:
            max_messages: Maximum messages allowed in window
            window_seconds: Time window in seconds
        """
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._message_times: list[float] = []

    def check_limit(self) -> bool:
        """
        Check if rate limit is exceeded.

        Returns:
            True if within limit, False if exceeded
        """
        now = time.time()
        cutoff = now - self.window_seconds
        self._message_times = [t for t in self._message_times if t > cutoff]

        if len(self._message_times) >= self.max_messages:
            return False

        self._message_times.append(now)
        return True

    def remaining(self) -> int:
        now = time.time()
        cutoff = now - self.window_seconds
        recent = len([t for t in self._message_times if t > cutoff])
        return max(0, self.max_messages - recent)


async def handle_websocket_stream(
    websocket: WebSocket,
    manager: EventStreamManager,
    user_id: str,
    request_id: str | None = None,
    ping_interval: int = 30,
    rate_limit_messages: int = 100,
    rate_limit_window: int = 60
):
    """
    Handle a WebSocket connection that waits for pipeline outcomes.

    Args:
        websocket: WebSocket connection
        manager: Stream manager holding the rooms
        user_id: User whose outcomes are streamed
        request_id: Optional request to follow in addition to the user room
        ping_interval: Seconds between ping messages (keepalive)
        rate_limit_messages: Max messages per window
        rate_limit_window: Rate limit window in seconds
    """
    rate_limiter = RateLimiter(rate_limit_messages, rate_limit_window)
    rooms = [user_room(user_id)]
    if request_id:
        rooms.append(request_room(request_id))

    await manager.connect(websocket, rooms)

    try:
        await websocket.send_json({
            "type": "welcome",
            "message": "Connected to intentflow outcome stream",
            "rooms": rooms,
            "rate_limit": {
                "max_messages": rate_limit_messages,
                "window_seconds": rate_limit_window
            }
        })

        last_ping = time.time()

        while websocket.client_state == WebSocketState.CONNECTED:
            if time.time() - last_ping > ping_interval:
                await manager.send_ping(websocket)
                last_ping = time.time()

            try:
                # Timeout to allow periodic ping checks
                message = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=1.0
                )

                if not rate_limiter.check_limit():
                    await websocket.send_json({
                        "type": "error",
                        "message": "Rate limit exceeded",
                        "retry_after": rate_limit_window
                    })
                    continue

                if message == "pong":
                    log.debug("websocket.pong_received")
                elif message == "ping":
                    await websocket.send_text("pong")

            except asyncio.TimeoutError:
                continue

    except WebSocketDisconnect:
        log.info("websocket.client_disconnected", user_id=user_id)
    finally:
        manager.disconnect(websocket)
