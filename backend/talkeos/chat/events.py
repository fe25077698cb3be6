"""Outbound server events.

Every event is a plain JSON-serializable dict with a ``type`` tag; field
names are camelCase to match what browser clients parse.
"""
from typing import Iterable

from .schemas import ChatMessage, Member, now_ms


def welcome(member: Member, room_id: str) -> dict:
    return {
        "type": "welcome",
        "userId": member.userId,
        "roomId": room_id,
        "username": member.username,
        "message": f"Welcome to room {room_id}, {member.username}!",
    }


def user_joined(member: Member) -> dict:
    return {
        "type": "user_joined",
        "username": member.username,
        "userId": member.userId,
        "message": f"{member.username} joined the chat",
        "timestamp": now_ms(),
    }


def user_left(member: Member) -> dict:
    return {
        "type": "user_left",
        "username": member.username,
        "userId": member.userId,
        "message": f"{member.username} left the chat",
        "timestamp": now_ms(),
    }


def recent_messages(messages: Iterable[ChatMessage]) -> dict:
    return {
        "type": "recent_messages",
        "messages": [m.to_event() for m in messages],
    }


def typing_start(username: str) -> dict:
    return {"type": "typing_start", "username": username, "timestamp": now_ms()}


def typing_stop(username: str) -> dict:
    return {"type": "typing_stop", "username": username, "timestamp": now_ms()}
