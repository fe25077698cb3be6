"""Fan-out of server events to room members.

Broadcasting serializes the event once, snapshots the member connections
under the room lock and sends concurrently with ``asyncio.gather()`` after
releasing it. A failure on one recipient (closed channel, send error, send
timeout) is logged and ignored; it never aborts delivery to the others and
is never surfaced to the caller. There is no acknowledgment and no retry.
"""
import asyncio
import json
import logging
from typing import List, Optional

from .connection import ConnectionHandle
from .room import Room

logger = logging.getLogger(__name__)

# Upper bound for a single send, in seconds
DEFAULT_SEND_TIMEOUT = 5.0


def encode_event(message: dict) -> str:
    return json.dumps(message, ensure_ascii=False)


class Broadcaster:
    """Delivers events to one connection or to a whole room.

    Args:
        send_timeout: Seconds a single send may take before the recipient is
            skipped. None disables the bound.
    """

    def __init__(self, send_timeout: Optional[float] = DEFAULT_SEND_TIMEOUT) -> None:
        self.send_timeout = send_timeout

    async def broadcast(
        self,
        room: Room,
        message: dict,
        exclude: Optional[ConnectionHandle] = None,
    ) -> int:
        """Send ``message`` to every member of ``room`` except ``exclude``.

        Returns:
            Number of recipients the message was handed to successfully.
        """
        connections = await room.connections(exclude=exclude)
        return await self.deliver(connections, message, room_id=room.room_id)

    async def deliver(
        self,
        connections: List[ConnectionHandle],
        message: dict,
        room_id: str = "",
    ) -> int:
        """Send ``message`` to an already snapshotted list of connections.

        Returns:
            Number of recipients the message was handed to successfully.
        """
        if not connections:
            return 0

        text = encode_event(message)
        results = await asyncio.gather(
            *[self._safe_send(conn, text) for conn in connections],
            return_exceptions=True
        )
        delivered = sum(1 for ok in results if ok is True)
        if delivered < len(connections):
            logger.debug(
                f"[Broadcast] {message.get('type')} in room {room_id}: "
                f"{delivered}/{len(connections)} delivered"
            )
        return delivered

    async def send(self, conn: ConnectionHandle, message: dict) -> bool:
        """Send ``message`` to a single connection with the same containment."""
        return await self._safe_send(conn, encode_event(message))

    async def _safe_send(self, conn: ConnectionHandle, text: str) -> bool:
        """Send pre-encoded text, returning False instead of raising."""
        if conn.closed:
            return False
        try:
            if self.send_timeout is None:
                await conn.send_text(text)
            else:
                await asyncio.wait_for(conn.send_text(text), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.debug(f"Send to connection {conn.id} timed out")
            return False
        except Exception as e:
            logger.debug(f"Failed to send to connection {conn.id}: {e}")
            return False
