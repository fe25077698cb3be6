"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket / and /ws: Real-time chat (query: room, username)
    - GET /rooms: Active rooms with member and message counts
    - GET /chat/{room_id}/history: Recent message history of a live room

Protocol Flow:
    1. Client connects with ?room=<id>&username=<name>
       → Server sends: {type: "welcome", userId, roomId, username, message}
       → Others receive: {type: "user_joined", username, userId, message, timestamp}
       → Server sends: {type: "recent_messages", messages: [...]} (if any)
    2. Client sends: {type: "chat_message", text}
       → Everyone (sender included) receives: {type: "chat_message", userId, username, text, timestamp}
    3. Client sends: {type: "typing_start"} / {type: "typing_stop"}
       → Others receive: {type: "typing_start" | "typing_stop", username, timestamp}
    4. On disconnect → Others receive: {type: "user_left", username, userId, message, timestamp}
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket
from fastapi.responses import JSONResponse

from talkeos.config import AppConfig, get_config

from .connection import WebSocketConnection
from .registry import RoomFullError
from .room import DEFAULT_HISTORY_LIMIT, DEFAULT_RECENT_LIMIT, Room
from .service import ChatService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter()

# WebSocket close code for policy violations
POLICY_VIOLATION = 1008


@router.get("/rooms")
async def list_rooms(service: ChatService = Depends(get_chat_service)) -> JSONResponse:
    """List live rooms.

    Returns:
        JSON with a ``rooms`` array of ``{roomId, members, messages}``.
    """
    rooms = [
        {"roomId": room.room_id, "members": len(room), "messages": len(room.history)}
        for room in service.registry.rooms()
    ]
    return JSONResponse({"rooms": rooms})


@router.get("/chat/{room_id}/history")
async def get_message_history(
    room_id: str,
    limit: int = Query(DEFAULT_RECENT_LIMIT, ge=1, le=DEFAULT_HISTORY_LIMIT, description="Number of messages to return"),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Get the most recent messages of a room, oldest first.

    Rooms only exist while someone is connected, so an unknown room simply
    has no messages.

    Example:
        GET /chat/r1/history?limit=20
    """
    room = service.registry.get(room_id)
    messages = room.list_recent_history(limit) if room else []
    return JSONResponse({
        "roomId": room_id,
        "messages": [msg.to_event() for msg in messages],
    })


def _policy_violation(
    config: AppConfig, service: ChatService, room_id: str, username: str
) -> Optional[str]:
    """Return why a connection must be refused, or None to accept it."""
    security = config.server.security
    if len(room_id) > security.max_room_name_length:
        return f"room name longer than {security.max_room_name_length} characters"
    if len(username) > security.max_username_length:
        return f"username longer than {security.max_username_length} characters"
    if security.max_participants > 0:
        room = service.registry.get(room_id)
        if room is not None and len(room) >= security.max_participants:
            return f"room is full ({security.max_participants} participants)"
    return None


@router.websocket("/ws")
@router.websocket("/")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    room: Optional[str] = Query(None, description="Room ID to join"),
    username: Optional[str] = Query(None, description="Display name"),
    service: ChatService = Depends(get_chat_service),
    config: AppConfig = Depends(get_config),
) -> None:
    """WebSocket endpoint for real-time chat in a room.

    Handles the complete lifecycle of one client: join, message loop and
    cleanup. Cleanup always runs, also when the connection task is
    cancelled.

    Args:
        websocket: The WebSocket connection.
        room: Room ID to join (default from config, "default").
        username: Display name (default from config, "Anonymous").
    """
    room_id, username = service.resolve_join_params(room, username)
    logger.info(f"[WS] New connection to room: {room_id}, username={username}")

    reason = _policy_violation(config, service, room_id, username)
    if reason:
        logger.warning(f"[WS] Rejecting connection to room {room_id}: {reason}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()
    conn = WebSocketConnection(websocket)
    chat_room: Optional[Room] = None
    user_id = conn.id

    try:
        chat_room, member = await service.connect(conn, room_id, username)
        user_id = member.userId
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"[WS] {user_id} disconnected (code={message.get('code')})")
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await service.receive(chat_room, conn, raw)
    except RoomFullError as e:
        # Lost a race for the last seat after the pre-accept check passed.
        logger.warning(f"[WS] Rejecting connection to room {room_id}: {e}")
        await websocket.close(code=POLICY_VIOLATION)
    except Exception as e:
        logger.error(f"[WS] Connection error for {user_id} in room {room_id}: {e}")
    finally:
        conn.mark_closed()
        if chat_room is None:
            chat_room = service.registry.get(room_id)
        if chat_room is not None:
            # Shielded: a cancelled connection task must still leave the room.
            await asyncio.shield(service.disconnect(chat_room, conn))
