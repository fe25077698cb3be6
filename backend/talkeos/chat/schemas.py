"""Data models and inbound message decoding for the chat relay.

Outbound event payloads are built in :mod:`talkeos.chat.events`; this module
holds the records kept in room state and the tagged union clients may send.
"""
import json
import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# =============================================================================
# Constants
# =============================================================================

USER_ID_ALPHABET = string.ascii_lowercase + string.digits
USER_ID_LENGTH = 9


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_user_id() -> str:
    """Short random user id.

    Not cryptographic and not checked for collisions; 36**9 possible values
    keep the odds negligible for a single process.
    """
    return "".join(random.choices(USER_ID_ALPHABET, k=USER_ID_LENGTH))


# =============================================================================
# Room records
# =============================================================================


class Member(BaseModel):
    """One connection's presence in one room.

    Attributes:
        userId: Server-generated identifier, unique per connection.
        username: Display name supplied by the client (not unique).
        connectedAt: When the connection joined the room.
    """
    model_config = ConfigDict(frozen=True)

    userId: str = Field(default_factory=generate_user_id, description="Server-assigned user ID")
    username: str = Field(..., description="Client-supplied display name")
    connectedAt: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Join time (UTC)"
    )


class ChatMessage(BaseModel):
    """A chat line as stored in room history and broadcast to members.

    Attributes:
        userId: Sender's user ID.
        username: Sender's display name at send time.
        text: Message body, relayed as provided.
        timestamp: Server-assigned epoch milliseconds.
    """
    model_config = ConfigDict(frozen=True)

    userId: str
    username: str
    text: str
    timestamp: int = Field(default_factory=now_ms)

    def to_event(self) -> dict:
        return {"type": ClientMessageType.CHAT_MESSAGE.value, **self.model_dump()}


# =============================================================================
# Inbound messages
# =============================================================================


class ClientMessageType(str, Enum):
    """Type tags a client may send."""
    CHAT_MESSAGE = "chat_message"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"


class ChatMessageIn(BaseModel):
    type: Literal["chat_message"]
    text: str


class TypingStartIn(BaseModel):
    type: Literal["typing_start"]


class TypingStopIn(BaseModel):
    type: Literal["typing_stop"]


ClientMessage = Annotated[
    Union[ChatMessageIn, TypingStartIn, TypingStopIn],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)

CLIENT_MESSAGE_TYPES = frozenset(t.value for t in ClientMessageType)


class MalformedMessageError(ValueError):
    """Inbound payload is not valid JSON or not a JSON object."""


def decode_client_message(raw: Union[str, bytes]) -> Optional[Any]:
    """Decode one inbound frame.

    Returns:
        The parsed message model, or None when the type tag is missing or
        not one we handle.

    Raises:
        MalformedMessageError: The payload is not a JSON object.
        pydantic.ValidationError: A known type with the wrong shape.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(data).__name__}")

    tag = data.get("type")
    if not isinstance(tag, str) or tag not in CLIENT_MESSAGE_TYPES:
        return None

    return _client_message_adapter.validate_python(data)
