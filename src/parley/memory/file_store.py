"""
memory/file_store.py — JSON-file conversation store

One `<conversation_id>.json` file per conversation under data_dir. The
directory is scanned once on first use; after that the in-process cache is
authoritative and every append rewrites the conversation's file.

Blocking file I/O runs in the default executor so the event loop never
stalls on disk.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from parley.brain.types import Message, Role
from parley.exceptions import (
    ConversationNotFoundError,
    InvalidArgumentError,
    PersistenceError,
)
from parley.memory.base import Conversation, ConversationMemory, new_conversation_id
from parley.observability.logger import get_logger

log = get_logger(__name__)


class JsonFileConversationStore(ConversationMemory):

    def __init__(self, data_dir: str | Path = "./data/conversations") -> None:
        self._dir = Path(data_dir)
        self._conversations: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    @property
    def data_dir(self) -> Path:
        return self._dir

    # ── Public API ────────────────────────────────────────────────────────────

    async def create_conversation(
        self, title: str = "", conversation_id: Optional[str] = None
    ) -> str:
        cid = conversation_id or new_conversation_id()
        async with self._lock:
            await self._ensure_loaded()
            if cid in self._conversations:
                raise InvalidArgumentError(f"Conversation already exists: '{cid}'")
            conv = Conversation(id=cid, title=title)
            await self._write(conv)
            self._conversations[cid] = conv
        log.info("memory.created", conversation_id=cid, store="file")
        return cid

    async def add_message(self, conversation_id: str, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        async with self._lock:
            await self._ensure_loaded()
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(conversation_id)
            updated = conv.model_copy(
                update={
                    "messages": [*conv.messages, message],
                    "updated_at": message.timestamp,
                }
            )
            # Cache only advances once the file write succeeded
            await self._write(updated)
            self._conversations[conversation_id] = updated
        return message

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with self._lock:
            await self._ensure_loaded()
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise ConversationNotFoundError(conversation_id)
            return conv.model_copy(update={"messages": list(conv.messages)})

    async def list_conversations(self, limit: int = 20) -> list[Conversation]:
        async with self._lock:
            await self._ensure_loaded()
            ordered = sorted(
                self._conversations.values(),
                key=lambda c: c.updated_at,
                reverse=True,
            )
            return [
                c.model_copy(update={"messages": list(c.messages)})
                for c in ordered[:limit]
            ]

    # ── Private helpers ───────────────────────────────────────────────────────

    def _path_for(self, conversation_id: str) -> Path:
        return self._dir / f"{conversation_id}.json"

    async def _ensure_loaded(self) -> None:
        """Scan data_dir once. Caller holds self._lock."""
        if self._loaded:
            return

        def _scan() -> list[Conversation]:
            self._dir.mkdir(parents=True, exist_ok=True)
            found: list[Conversation] = []
            for path in sorted(self._dir.glob("*.json")):
                try:
                    found.append(
                        Conversation.model_validate_json(path.read_text(encoding="utf-8"))
                    )
                except (OSError, PydanticValidationError) as e:
                    log.warning("memory.load_skipped", path=str(path), error=str(e))
            return found

        loop = asyncio.get_running_loop()
        try:
            conversations = await loop.run_in_executor(None, _scan)
        except OSError as e:
            raise PersistenceError(f"Cannot read conversation directory {self._dir}: {e}") from e

        for conv in conversations:
            self._conversations[conv.id] = conv
        self._loaded = True
        log.info("memory.loaded", count=len(conversations), data_dir=str(self._dir))

    async def _write(self, conv: Conversation) -> None:
        payload = conv.model_dump_json(indent=2)
        path = self._path_for(conv.id)

        def _save() -> None:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _save)
        except OSError as e:
            log.error("memory.write_failed", conversation_id=conv.id, error=str(e))
            raise PersistenceError(f"Failed to save conversation {conv.id}: {e}") from e
