"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /api/rooms: Room catalog
    - GET /api/rooms/{room}/users: Who is currently in a room
    - WebSocket /ws/chat: Real-time chat events

The WebSocket protocol supports:
    - Registration under a display name (after out-of-band login)
    - Joining and leaving rooms, with presence updates
    - Room messages and direct messages (persisted before delivery)
    - Typing indicators (room-wide or direct)

Protocol Message Types (client -> server):
    - registerUser: {displayName}
    - joinRoom: {room}
    - leaveRoom: {}
    - groupMessage: {message}
    - privateMessage: {toUser, message}
    - typing / stopTyping: {toUser?}
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from roomchat.config import get_config
from roomchat.history.service import HistoryStoreError, get_history_store

from .delivery import WebSocketDeliveryChannel
from .events import ChatEventRouter, Ignored, OutboundEvent

logger = logging.getLogger(__name__)

router = APIRouter()

_event_router: Optional[ChatEventRouter] = None


def get_event_router() -> ChatEventRouter:
    """Get the global chat event router, building it on first use."""
    global _event_router
    if _event_router is None:
        _event_router = ChatEventRouter(
            channel=WebSocketDeliveryChannel(get_config().server.send_queue_size),
            history=get_history_store(),
            room_catalog=get_config().rooms.catalog,
        )
    return _event_router


def set_event_router(event_router: Optional[ChatEventRouter]) -> None:
    """Set (or clear, with None) the global chat event router."""
    global _event_router
    _event_router = event_router


@router.get("/api/rooms")
async def list_rooms() -> list:
    """Get the catalog of joinable rooms."""
    return get_config().rooms.catalog


@router.get("/api/rooms/{room}/users")
async def room_users(room: str) -> dict:
    """Get the display names currently present in a room.

    Example:
        GET /api/rooms/sports/users -> {"room": "sports", "occupants": ["alice", "bob"]}
    """
    occupants = await get_event_router().occupants(room)
    return {"room": room, "occupants": occupants}


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects -> Server assigns a connection id
           -> Server sends: {type: "connected", connectionId: "xxx"}
        2. Client sends: {type: "registerUser", displayName}
        3. Client sends: {type: "joinRoom", room}
           -> Room receives: {type: "roomMessage", fromUser: "System", ...}
           -> Room receives: {type: "updateUsers", room, occupants}
        4. Client sends: {type: "groupMessage", message}
           -> Room receives: {type: "roomMessage", fromUser, room, message, sentAt}
        5. On disconnect -> Room receives a "disconnected" notice and the
           updated occupant list
    """
    event_router = get_event_router()
    channel = event_router.channel

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    logger.info(f"[WS] Connection accepted: {connection_id}")

    try:
        await websocket.send_json({"type": "connected", "connectionId": connection_id})
        if isinstance(channel, WebSocketDeliveryChannel):
            channel.connect(connection_id, websocket)

        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                logger.debug(f"[WS] Non-object frame from {connection_id} ignored")
                continue
            logger.debug("[WS] %s received: type=%s", connection_id, data.get("type", "?"))

            try:
                outcome = await event_router.dispatch(connection_id, data)
            except HistoryStoreError as e:
                logger.error(f"[WS] Message from {connection_id} not stored: {e}")
                channel.send_to(connection_id, OutboundEvent.ERROR.value, {
                    "error": "Message could not be saved and was not sent",
                })
                continue

            if isinstance(outcome, Ignored):
                logger.debug(f"[WS] {data.get('type')} from {connection_id} ignored: {outcome.reason.value}")

    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {connection_id}")
    except RuntimeError as e:
        # receive_json raises once the channel has closed a lagging connection
        logger.info(f"[WS] Connection closed by server: {connection_id} ({e})")
    finally:
        await event_router.disconnect(connection_id)
        if isinstance(channel, WebSocketDeliveryChannel):
            channel.disconnect(connection_id)
