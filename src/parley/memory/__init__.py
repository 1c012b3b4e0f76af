"""
memory/__init__.py — Parley Conversation Memory

Exports the store interface and the two concrete stores, plus a factory
that picks one from settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from parley.memory.base import Conversation, ConversationMemory
from parley.memory.file_store import JsonFileConversationStore
from parley.memory.in_memory import InMemoryConversationStore

if TYPE_CHECKING:
    from parley.config.settings import Settings

__all__ = [
    "Conversation",
    "ConversationMemory",
    "InMemoryConversationStore",
    "JsonFileConversationStore",
    "create_memory",
]


def create_memory(settings: "Settings") -> ConversationMemory:
    """Instantiate the store named by settings.memory.backend."""
    if settings.memory.backend == "memory":
        return InMemoryConversationStore()
    return JsonFileConversationStore(settings.memory.data_dir)
