"""Connection handles: the chat core's view of one client's channel.

The room and broadcast code only ever sees a :class:`ConnectionHandle`, never
a raw WebSocket, so they can be exercised without a transport.
"""
import uuid
from typing import Optional, Protocol, runtime_checkable

from fastapi import WebSocket
from starlette.websockets import WebSocketState


@runtime_checkable
class ConnectionHandle(Protocol):
    """One client's live bidirectional channel.

    Attributes:
        id: Opaque identity assigned when the transport accepted the client.
            Never reused.
    """

    id: str

    @property
    def closed(self) -> bool:
        """True once the channel was closed or errored."""
        ...

    async def send_text(self, data: str) -> None:
        """Send one text frame. May raise on a dead channel."""
        ...


def new_connection_id() -> str:
    return uuid.uuid4().hex


class WebSocketConnection:
    """ConnectionHandle backed by a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or new_connection_id()
        self._websocket = websocket
        self._closed = False

    @property
    def websocket(self) -> WebSocket:
        return self._websocket

    @property
    def closed(self) -> bool:
        if self._closed:
            return True
        return (
            self._websocket.client_state != WebSocketState.CONNECTED
            or self._websocket.application_state != WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send_text(self, data: str) -> None:
        await self._websocket.send_text(data)

    def __repr__(self) -> str:
        return f"WebSocketConnection(id={self.id!r}, closed={self.closed})"
