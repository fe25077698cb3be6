"""Inbound message dispatch.

Protocol Message Types:
    - chat_message {text}: stored in history and echoed to every member,
      sender included
    - typing_start {}: typing indicator on, re-arms the auto-stop countdown
    - typing_stop {}: typing indicator off

Malformed payloads are logged and dropped, unknown types are ignored, and
messages from connections that are not members of the room are discarded.
None of these produce a response or close the connection.
"""
import logging
from typing import Optional, Union

from pydantic import ValidationError

from .broadcast import Broadcaster
from .connection import ConnectionHandle
from .room import Room
from .schemas import (
    ChatMessage,
    ChatMessageIn,
    MalformedMessageError,
    TypingStartIn,
    TypingStopIn,
    decode_client_message,
)
from .typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)


class MessageRouter:
    """Routes decoded client messages to their handlers.

    Args:
        broadcaster: Fan-out for chat messages.
        typing: Typing indicator state machine.
        max_message_size: Payloads larger than this many bytes are dropped.
            None disables the check.
        log_messages: Log every inbound payload at debug level.
    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        typing: TypingIndicator,
        max_message_size: Optional[int] = None,
        log_messages: bool = False,
    ) -> None:
        self.broadcaster = broadcaster
        self.typing = typing
        self.max_message_size = max_message_size
        self.log_messages = log_messages

    async def handle(self, room: Room, conn: ConnectionHandle, raw: Union[str, bytes]) -> None:
        """Process one inbound frame from ``conn`` in ``room``."""
        if self.max_message_size is not None:
            size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
            if size > self.max_message_size:
                logger.warning(
                    f"[Router] Dropped {size}-byte payload from {conn.id} in room "
                    f"{room.room_id} (limit {self.max_message_size})"
                )
                return

        if self.log_messages:
            logger.debug("[Router] Room %s received from %s: %s", room.room_id, conn.id, raw)

        try:
            message = decode_client_message(raw)
        except (MalformedMessageError, ValidationError) as e:
            logger.warning(f"[Router] Error parsing message from {conn.id}: {e}")
            return

        if message is None:
            logger.debug(f"[Router] Ignoring message of unknown type from {conn.id}")
            return

        if isinstance(message, ChatMessageIn):
            await self.handle_chat_message(room, conn, message)
        elif isinstance(message, TypingStartIn):
            await self.typing.start(room, conn)
        elif isinstance(message, TypingStopIn):
            await self.typing.stop(room, conn)

    async def handle_chat_message(
        self, room: Room, conn: ConnectionHandle, message: ChatMessageIn
    ) -> Optional[ChatMessage]:
        """Store and broadcast a chat line. The sender gets its own echo.

        Returns:
            The stored message, or None if ``conn`` is not a member.
        """
        member = room.get_member(conn)
        if member is None:
            logger.debug(f"[Router] Chat message from non-member {conn.id} discarded")
            return None

        chat_message = ChatMessage(
            userId=member.userId,
            username=member.username,
            text=message.text,
        )
        recipients = await room.add_message(chat_message)
        await self.broadcaster.deliver(recipients, chat_message.to_event(), room_id=room.room_id)
        return chat_message
