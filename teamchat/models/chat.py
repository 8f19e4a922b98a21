# teamchat/models/chat.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict

SYSTEM_SENDER = "system"
ASSISTANT_SENDER = "assistant"


class MessageKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class PresenceEntry(BaseModel):
    """One line of a presence snapshot; also the sender of a user message."""

    model_config = ConfigDict(frozen=True)

    id: str
    handle: str


class Message(BaseModel):
    """
    A chat message as clients see it.

    Wire shape:
        {
            "id": "42",
            "text": "hello",
            "sender": {"id": "u1", "handle": "alice@example.com"},
            "room": "general",
            "kind": "user",
            "timestamp": "2025-11-30T20:00:00Z",
            "is_error": false
        }

    ``sender`` is the literal "system" for join/leave notices and "assistant"
    for assistant replies. Messages are never mutated after creation.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    sender: Union[PresenceEntry, Literal["system", "assistant"]]
    room: str
    kind: MessageKind
    timestamp: datetime
    is_error: bool = False

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")
