"""Per-room state: members, typing flags and bounded message history.

Concurrency:
    Each Room owns an ``asyncio.Lock``. Every mutation (join, leave, history
    append, typing update) happens under it. Readers that only need a
    consistent snapshot (``connections``) take the lock briefly and return a
    copy, so broadcasts never hold it while sending.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from .connection import ConnectionHandle
from .schemas import ChatMessage, Member, generate_user_id

logger = logging.getLogger(__name__)

# Maximum number of messages kept per room
DEFAULT_HISTORY_LIMIT = 100

# Number of messages replayed to a joining client
DEFAULT_RECENT_LIMIT = 50


@dataclass
class TypingEntry:
    """A member currently flagged as typing.

    ``token`` identifies the arming that created the entry; a countdown may
    only clear the entry it armed.
    """
    username: str
    last_activity: float = field(default_factory=time.time)
    token: object = field(default_factory=object)


class Room:
    """Shared state for one named room.

    Attributes:
        room_id: Case-sensitive room name.
        members: connection id -> Member.
        typing: connection id -> TypingEntry for members currently typing.
        history: Most recent chat messages, oldest first, bounded.
        lock: Serializes all mutations of this room.
    """

    def __init__(self, room_id: str, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.room_id = room_id
        self.members: Dict[str, Member] = {}
        self.typing: Dict[str, TypingEntry] = {}
        self.history: Deque[ChatMessage] = deque(maxlen=history_limit)
        self.lock = asyncio.Lock()
        self._connections: Dict[str, ConnectionHandle] = {}

    # =========================================================================
    # Membership
    # =========================================================================

    async def join(self, conn: ConnectionHandle, username: str) -> Member:
        """Register a connection as a new member with a fresh userId."""
        async with self.lock:
            return self.join_locked(conn, username)

    def join_locked(self, conn: ConnectionHandle, username: str) -> Member:
        """``join`` for callers already holding ``self.lock``."""
        member = Member(userId=generate_user_id(), username=username)
        self.members[conn.id] = member
        self._connections[conn.id] = conn
        logger.debug(f"[Room] {member.userId} ({username}) joined {self.room_id}")
        return member

    async def leave(self, conn: ConnectionHandle) -> Optional[Member]:
        """Remove a connection's member record and typing flag.

        Idempotent: returns None when the connection is not (or no longer)
        a member.
        """
        async with self.lock:
            self.typing.pop(conn.id, None)
            self._connections.pop(conn.id, None)
            member = self.members.pop(conn.id, None)
        if member:
            logger.debug(f"[Room] {member.userId} ({member.username}) left {self.room_id}")
        return member

    def get_member(self, conn: ConnectionHandle) -> Optional[Member]:
        return self.members.get(conn.id)

    async def connections(
        self, exclude: Optional[ConnectionHandle] = None
    ) -> List[ConnectionHandle]:
        """Snapshot of member connections, optionally without one of them."""
        exclude_id = exclude.id if exclude is not None else None
        async with self.lock:
            return [
                conn for conn_id, conn in self._connections.items()
                if conn_id != exclude_id
            ]

    @property
    def is_empty(self) -> bool:
        return not self.members

    def __len__(self) -> int:
        return len(self.members)

    # =========================================================================
    # History
    # =========================================================================

    async def add_message(self, message: ChatMessage) -> List[ConnectionHandle]:
        """Append to history; the oldest entry is dropped past the cap.

        Returns:
            The member connections at the moment of the append. Members that
            join afterwards see the message in their history snapshot instead.
        """
        async with self.lock:
            self.history.append(message)
            return list(self._connections.values())

    def list_recent_history(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[ChatMessage]:
        """Last ``min(limit, len(history))`` messages, oldest first."""
        if limit <= 0:
            return []
        return list(self.history)[-limit:]

    # =========================================================================
    # Typing flags
    # =========================================================================

    async def mark_typing(self, conn: ConnectionHandle, token: object) -> bool:
        """Flag a member as typing under a new arming token.

        Returns:
            False if the connection is not a member (nothing recorded).
        """
        async with self.lock:
            member = self.members.get(conn.id)
            if member is None:
                return False
            self.typing[conn.id] = TypingEntry(username=member.username, token=token)
            return True

    async def clear_typing(self, conn: ConnectionHandle, token: Optional[object] = None) -> bool:
        """Drop a member's typing flag.

        Args:
            conn: The typing member's connection.
            token: When given, only clear the entry created by that arming.

        Returns:
            True if this call removed the entry.
        """
        async with self.lock:
            entry = self.typing.get(conn.id)
            if entry is None:
                return False
            if token is not None and entry.token is not token:
                return False
            del self.typing[conn.id]
            return True

    def is_typing(self, conn: ConnectionHandle) -> bool:
        return conn.id in self.typing

    def __repr__(self) -> str:
        return f"Room({self.room_id!r}, members={len(self.members)}, history={len(self.history)})"
