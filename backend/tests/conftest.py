"""Shared test fixtures and configuration for backend tests."""
import asyncio
import json
import time
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from talkeos.chat.connection import new_connection_id
from talkeos.chat.service import ChatService, get_chat_service
from talkeos.main import app


class FakeConnection:
    """In-memory ConnectionHandle that records every event it is sent.

    Args:
        fail: Raise on every send, like a reset socket.
        delay: Seconds each send takes, to imitate a slow client.
    """

    def __init__(self, name: Optional[str] = None, fail: bool = False, delay: float = 0.0) -> None:
        self.id = name or new_connection_id()
        self.fail = fail
        self.delay = delay
        self.closed = False
        self.sent: List[dict] = []
        self.received_at: List[float] = []

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(json.loads(data))
        self.received_at.append(time.monotonic())

    def events(self, event_type: str) -> List[dict]:
        return [e for e in self.sent if e["type"] == event_type]

    def types(self) -> List[str]:
        return [e["type"] for e in self.sent]


@pytest.fixture
def make_conn():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def service():
    """A fresh ChatService with a short typing timeout."""
    return ChatService(typing_timeout=0.1)


@pytest.fixture
def chat_service():
    """Fresh ChatService installed as the app's dependency."""
    svc = ChatService(typing_timeout=0.2)
    app.dependency_overrides[get_chat_service] = lambda: svc
    yield svc
    app.dependency_overrides.pop(get_chat_service, None)


@pytest.fixture
def client(chat_service):
    """TestClient sharing one event loop across all sessions of a test."""
    with TestClient(app) as test_client:
        yield test_client


def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` from the test thread while the app loop catches up."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    """Polling helper for state changed by the app's event loop."""
    return _wait_until

