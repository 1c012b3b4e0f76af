"""
memory/in_memory.py — Process-local conversation store

Owns all Conversation objects in a dict guarded by asyncio.Lock. Nothing
survives a restart; used by tests and by `memory.backend: memory`.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from parley.brain.types import Message, Role
from parley.exceptions import ConversationNotFoundError, InvalidArgumentError
from parley.memory.base import Conversation, ConversationMemory, new_conversation_id
from parley.observability.logger import get_logger

log = get_logger(__name__)


class InMemoryConversationStore(ConversationMemory):

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    async def create_conversation(
        self, title: str = "", conversation_id: Optional[str] = None
    ) -> str:
        cid = conversation_id or new_conversation_id()
        async with self._lock:
            if cid in self._conversations:
                raise InvalidArgumentError(f"Conversation already exists: '{cid}'")
            self._conversations[cid] = Conversation(id=cid, title=title)
        log.info("memory.created", conversation_id=cid, store="memory")
        return cid

    async def add_message(self, conversation_id: str, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        async with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(conversation_id)
            conv.messages.append(message)
            conv.updated_at = message.timestamp
        return message

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(conversation_id)
            # Snapshot: callers never see later appends through this object
            return conv.model_copy(update={"messages": list(conv.messages)})

    async def list_conversations(self, limit: int = 20) -> list[Conversation]:
        async with self._lock:
            ordered = sorted(
                self._conversations.values(),
                key=lambda c: c.updated_at,
                reverse=True,
            )
            return [
                c.model_copy(update={"messages": list(c.messages)})
                for c in ordered[:limit]
            ]

    @property
    def count(self) -> int:
        """Synchronous count — use only from non-async contexts (e.g. tests)."""
        return len(self._conversations)

