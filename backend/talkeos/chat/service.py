"""Connection lifecycle for the chat relay.

``ChatService`` owns the room registry and wires the broadcaster, typing
indicator and message router together. The transport layer calls
``connect`` once per client, ``receive`` for each frame and ``disconnect``
exactly once when the channel closes or errors.

Usage:
    service = get_chat_service()
    room, member = await service.connect(conn, "r1", "alice")
    await service.receive(room, conn, '{"type": "chat_message", "text": "hi"}')
    await service.disconnect(room, conn)
"""
import asyncio
import logging
from typing import Optional, Tuple, Union

from talkeos.config import get_config

from . import events
from .broadcast import DEFAULT_SEND_TIMEOUT, Broadcaster
from .connection import ConnectionHandle
from .message_router import MessageRouter
from .registry import RoomRegistry
from .room import DEFAULT_HISTORY_LIMIT, DEFAULT_RECENT_LIMIT, Room
from .schemas import Member
from .typing_indicator import DEFAULT_TYPING_TIMEOUT, TypingIndicator

logger = logging.getLogger(__name__)

DEFAULT_ROOM_ID = "default"
DEFAULT_USERNAME = "Anonymous"


class ChatService:
    """Room registry plus the components that act on it.

    Attributes:
        registry: Every live room in this process.
        broadcaster: Event fan-out.
        typing: Typing indicator timers.
        router: Inbound message dispatch.
    """

    def __init__(
        self,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        recent_history_limit: int = DEFAULT_RECENT_LIMIT,
        typing_timeout: float = DEFAULT_TYPING_TIMEOUT,
        send_timeout: Optional[float] = DEFAULT_SEND_TIMEOUT,
        max_message_size: Optional[int] = None,
        log_messages: bool = False,
        default_room: str = DEFAULT_ROOM_ID,
        default_username: str = DEFAULT_USERNAME,
        max_participants: int = 0,
    ) -> None:
        self.recent_history_limit = recent_history_limit
        self.max_participants = max_participants
        self.default_room = default_room
        self.default_username = default_username

        self.registry = RoomRegistry(history_limit=history_limit)
        self.broadcaster = Broadcaster(send_timeout=send_timeout)
        self.typing = TypingIndicator(self.broadcaster, timeout=typing_timeout)
        self.router = MessageRouter(
            self.broadcaster,
            self.typing,
            max_message_size=max_message_size,
            log_messages=log_messages,
        )

    @classmethod
    def from_config(cls, config) -> "ChatService":
        """Build a service from an ``AppConfig``."""
        return cls(
            history_limit=config.chat.history_limit,
            recent_history_limit=config.chat.recent_history_limit,
            typing_timeout=config.chat.typing_timeout_ms / 1000,
            send_timeout=config.server.websocket.send_timeout_ms / 1000,
            max_message_size=config.server.websocket.max_message_size,
            log_messages=config.development.log_websocket_messages,
            default_room=config.chat.default_room,
            default_username=config.chat.default_username,
            max_participants=config.server.security.max_participants,
        )

    def resolve_join_params(
        self, room_id: Optional[str], username: Optional[str]
    ) -> Tuple[str, str]:
        """Apply defaults for missing or empty join parameters."""
        return (room_id or self.default_room, username or self.default_username)

    async def connect(
        self,
        conn: ConnectionHandle,
        room_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Tuple[Room, Member]:
        """Join ``conn`` to a room and send the greeting events.

        Sends ``welcome`` to the new member, ``user_joined`` to everyone
        else, then one ``recent_messages`` batch if the room had history at
        the moment of the join. If the join is cancelled while greeting, the
        member is removed again before the cancellation propagates.

        Raises:
            RoomFullError: The room is at ``max_participants``.
        """
        room_id, username = self.resolve_join_params(room_id, username)
        room, member, recent = await self.registry.join(
            room_id,
            conn,
            username,
            recent_limit=self.recent_history_limit,
            max_members=self.max_participants,
        )
        logger.info(
            f"[Chat] {username} joined room {room_id} as {member.userId}. "
            f"Room now has {len(room)} members"
        )

        try:
            await self.broadcaster.send(conn, events.welcome(member, room_id))
            await self.broadcaster.broadcast(room, events.user_joined(member), exclude=conn)
            if recent:
                await self.broadcaster.send(conn, events.recent_messages(recent))
        except asyncio.CancelledError:
            logger.info(f"[Chat] Join of {member.userId} to room {room_id} cancelled")
            await asyncio.shield(self.disconnect(room, conn))
            raise

        return room, member

    async def receive(self, room: Room, conn: ConnectionHandle, raw: Union[str, bytes]) -> None:
        await self.router.handle(room, conn, raw)

    async def disconnect(self, room: Room, conn: ConnectionHandle) -> Optional[Member]:
        """Remove ``conn`` from ``room``, announce it and reclaim the room.

        Safe to call more than once.

        Returns:
            The member that left, or None if it was already gone.
        """
        self.typing.discard(room, conn)
        member = await room.leave(conn)
        if member:
            logger.info(f"[Chat] {member.username} ({member.userId}) left room {room.room_id}")
            await self.broadcaster.broadcast(room, events.user_left(member))
        await self.registry.remove_if_empty(room.room_id)
        return member

    async def shutdown(self) -> None:
        await self.typing.shutdown()


_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Return the process-wide ChatService, building it from config on first use."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService.from_config(get_config())
    return _chat_service


def set_chat_service(service: Optional[ChatService]) -> None:
    """Install (or with None, reset) the process-wide ChatService."""
    global _chat_service
    _chat_service = service
