import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.realtime.events import EVENT_PONG, GROUP_CATEGORY, GROUP_POST, build_message
from app.realtime.hub import RealtimeHub, WebSocketConnection

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


async def handle_client_message(hub: RealtimeHub, connection: WebSocketConnection, message) -> None:
    if not isinstance(message, dict):
        return
    kind = message.get("type")
    if kind == "join:category":
        hub.join(connection, GROUP_CATEGORY, message.get("key"))
    elif kind == "join:post":
        hub.join(connection, GROUP_POST, message.get("id"))
    elif kind == "leave:category":
        hub.leave(connection, GROUP_CATEGORY, message.get("key"))
    elif kind == "leave:post":
        hub.leave(connection, GROUP_POST, message.get("id"))
    elif kind == "ping":
        await connection.send_json(build_message(EVENT_PONG, {}))


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    hub: RealtimeHub = websocket.app.state.forum.hub
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    logger.debug("realtime_connected connection_id=%s", connection.connection_id)
    try:
        while True:
            event = await websocket.receive()
            if event["type"] == "websocket.disconnect":
                break
            raw = event.get("text")
            if raw is None:
                continue
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            await handle_client_message(hub, connection, message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection)
        logger.debug("realtime_disconnected connection_id=%s", connection.connection_id)
