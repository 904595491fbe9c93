"""WebSocket route for realtime outcomes."""
from fastapi import APIRouter, Query, WebSocket
from ..streaming.websocket import handle_websocket_stream

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: str = Query(...),
    request_id: str | None = Query(default=None),
):
    """
    Stream pipeline outcomes for one user.

    Messages are ``proposal:created``, ``intent:denied`` and
    ``intent:completed`` notifications carrying the original ``requestId``.
    Passing ``request_id`` additionally joins that request's room.

    Example client (JavaScript):
    ```javascript
    const ws = new WebSocket('ws://localhost:8080/ws?user_id=u1&request_id=r1');
    ws.onmessage = (event) => {
        const data = JSON.parse(event.data);
        if (data.type === 'ping') {
            ws.send('pong');
        }
    };
    ```
    """
    manager = websocket.app.state.pipeline.stream_manager
    await handle_websocket_stream(websocket, manager, user_id=user_id, request_id=request_id)
