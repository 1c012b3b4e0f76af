"""
memory/base.py — Conversation store interface

A Conversation is an append-only transcript. Stores implement create,
append, get and list; every method is a coroutine so file or network
stores can suspend.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from parley.brain.types import Message, Role, utcnow


class Conversation(BaseModel):
    id: str
    title: str = ""
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "message_count": len(self.messages),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ConversationMemory(ABC):
    """
    Abstract conversation store.

    Contract:
      - create_conversation() returns the new id; an explicit id is honoured.
      - add_message() raises ConversationNotFoundError for unknown ids and
        PersistenceError when the write fails.
      - get_conversation() raises ConversationNotFoundError.
      - list_conversations() is most-recently-updated first.
    """

    @abstractmethod
    async def create_conversation(
        self, title: str = "", conversation_id: Optional[str] = None
    ) -> str:
        ...

    @abstractmethod
    async def add_message(self, conversation_id: str, role: Role, content: str) -> Message:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    @abstractmethod
    async def list_conversations(self, limit: int = 20) -> list[Conversation]:
        ...

    async def close(self) -> None:
        """Release resources. No-op for most stores."""


def new_conversation_id() -> str:
    """Fresh internal id: conv_<16 hex chars>."""
    return f"conv_{uuid.uuid4().hex[:16]}"
