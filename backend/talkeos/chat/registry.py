"""Room registry: room id -> Room, created on first join, dropped when empty."""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .connection import ConnectionHandle
from .room import DEFAULT_HISTORY_LIMIT, Room
from .schemas import ChatMessage, Member

logger = logging.getLogger(__name__)


class RoomFullError(Exception):
    """The room already holds its maximum number of members."""

    def __init__(self, room_id: str, max_members: int) -> None:
        super().__init__(f"room {room_id} is full ({max_members} participants)")
        self.room_id = room_id
        self.max_members = max_members


class RoomRegistry:
    """Owns every live Room in the process.

    Lock order is registry lock, then room lock. Nothing takes them in the
    other order.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.history_limit = history_limit
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, room_id: str) -> Room:
        """Return the room for ``room_id``, creating an empty one if needed."""
        async with self._lock:
            return self._get_or_create_locked(room_id)

    def _get_or_create_locked(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id, history_limit=self.history_limit)
            self._rooms[room_id] = room
            logger.info(f"[Registry] Created room {room_id}")
        return room

    async def join(
        self,
        room_id: str,
        conn: ConnectionHandle,
        username: str,
        recent_limit: int = 0,
        max_members: int = 0,
    ) -> Tuple[Room, Member, List[ChatMessage]]:
        """Resolve the room and add the connection to it in one step.

        Holding the registry lock across both keeps a concurrent
        ``remove_if_empty`` from dropping the room in between. The history
        snapshot is taken under the same room lock as the join, so every
        later message reaches the new member live and none of them is also
        in the snapshot.

        Args:
            recent_limit: How many of the latest messages to snapshot.
            max_members: Refuse the join when the room already has this
                many members. 0 means no limit.

        Returns:
            The room, the new member and the recent history snapshot.

        Raises:
            RoomFullError: The room is at ``max_members``.
        """
        async with self._lock:
            room = self._get_or_create_locked(room_id)
            async with room.lock:
                if max_members > 0 and len(room) >= max_members:
                    raise RoomFullError(room_id, max_members)
                member = room.join_locked(conn, username)
                recent = room.list_recent_history(recent_limit)
        return room, member, recent

    async def remove_if_empty(self, room_id: str) -> bool:
        """Drop the room iff it has no members.

        Returns:
            True if the room was removed.
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            async with room.lock:
                if not room.is_empty:
                    return False
                del self._rooms[room_id]
        logger.info(f"[Registry] Removed empty room {room_id}")
        return True

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
