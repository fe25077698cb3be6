"""Typing indicators with automatic expiry.

Each (room, member) pair is either idle or typing. ``typing_start`` flags the
member, tells the others and arms a countdown; ``typing_stop`` or the
countdown firing clears the flag and tells the others. A new
``typing_start`` while typing re-arms the countdown.

Exactly one ``typing_stop`` goes out per typing episode. The flag lives in
``Room.typing`` under the room lock and carries the token of the arming that
set it; whoever removes the flag (explicit stop, or the countdown holding the
current token) is the only one that announces.
"""
import asyncio
import logging
from typing import Dict, Optional, Tuple

from . import events
from .broadcast import Broadcaster
from .connection import ConnectionHandle
from .room import Room

logger = logging.getLogger(__name__)

# Seconds without a new typing_start before the indicator clears itself
DEFAULT_TYPING_TIMEOUT = 3.0

TimerKey = Tuple[str, str]


class TypingIndicator:
    """Drives typing state for every room.

    Args:
        broadcaster: Used to announce typing_start / typing_stop.
        timeout: Countdown length in seconds.
    """

    def __init__(self, broadcaster: Broadcaster, timeout: float = DEFAULT_TYPING_TIMEOUT) -> None:
        self.broadcaster = broadcaster
        self.timeout = timeout
        self._timers: Dict[TimerKey, asyncio.Task] = {}

    @staticmethod
    def _key(room: Room, conn: ConnectionHandle) -> TimerKey:
        return (room.room_id, conn.id)

    async def start(self, room: Room, conn: ConnectionHandle) -> bool:
        """Handle typing_start from ``conn``.

        Returns:
            False if ``conn`` is not a member of ``room``.
        """
        token = object()
        if not await room.mark_typing(conn, token):
            return False

        self._cancel_timer(room, conn)
        key = self._key(room, conn)
        self._timers[key] = asyncio.create_task(
            self._expire(room, conn, token),
            name=f"typing-expire:{room.room_id}:{conn.id}",
        )

        member = room.get_member(conn)
        if member is not None:
            await self.broadcaster.broadcast(room, events.typing_start(member.username), exclude=conn)
        return True

    async def stop(self, room: Room, conn: ConnectionHandle) -> bool:
        """Handle typing_stop from ``conn``.

        Returns:
            True if the member was typing and typing_stop was announced.
        """
        self._cancel_timer(room, conn)
        username = self._typing_username(room, conn)
        if not await room.clear_typing(conn):
            return False
        await self.broadcaster.broadcast(room, events.typing_stop(username), exclude=conn)
        return True

    def discard(self, room: Room, conn: ConnectionHandle) -> None:
        """Forget ``conn``'s countdown without announcing anything.

        Used on disconnect; the flag itself goes away with ``Room.leave``.
        """
        self._cancel_timer(room, conn)

    def is_armed(self, room: Room, conn: ConnectionHandle) -> bool:
        return self._key(room, conn) in self._timers

    async def shutdown(self) -> None:
        """Cancel every pending countdown."""
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def _cancel_timer(self, room: Room, conn: ConnectionHandle) -> None:
        task = self._timers.pop(self._key(room, conn), None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    def _typing_username(room: Room, conn: ConnectionHandle) -> str:
        entry = room.typing.get(conn.id)
        if entry is not None:
            return entry.username
        member = room.get_member(conn)
        return member.username if member else ""

    async def _expire(self, room: Room, conn: ConnectionHandle, token: object) -> None:
        key = self._key(room, conn)
        await asyncio.sleep(self.timeout)
        username = self._typing_username(room, conn)
        cleared = await room.clear_typing(conn, token)
        # Once cleared this countdown owns the typing_stop; unregister
        # before the broadcast so a late stop() cannot cancel it.
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        if not cleared:
            return
        logger.debug(f"[Typing] Auto-stop for {username} in room {room.room_id}")
        await self.broadcaster.broadcast(room, events.typing_stop(username), exclude=conn)
