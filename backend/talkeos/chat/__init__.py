"""Room-based chat relay: registry, broadcast, typing indicators and routing."""

from .broadcast import Broadcaster
from .connection import ConnectionHandle, WebSocketConnection
from .message_router import MessageRouter
from .registry import RoomFullError, RoomRegistry
from .room import Room
from .router import router
from .schemas import ChatMessage, Member
from .service import ChatService, get_chat_service, set_chat_service
from .typing_indicator import TypingIndicator

__all__ = [
    "Broadcaster",
    "ChatMessage",
    "ChatService",
    "ConnectionHandle",
    "Member",
    "MessageRouter",
    "Room",
    "RoomFullError",
    "RoomRegistry",
    "TypingIndicator",
    "WebSocketConnection",
    "get_chat_service",
    "router",
    "set_chat_service",
]
