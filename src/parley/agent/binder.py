"""
agent/binder.py — Conversation Identity Binder

Maps caller-facing conversation handles to the engine's internal session
ids. One table per process, one asyncio.Lock around every read and write.

resolve(handle):
  - empty / None      → mint a new handle (conv_<10 chars>) bound to the
                        engine's active session
  - known handle      → its existing binding
  - unseen handle     → keep it, bind it to a freshly created session, so
                        two different handles never share a transcript

If the store cannot create the session, the id is minted locally and bound
anyway; the engine creates the transcript on its first turn.

Bindings never change once made; bind() to a different id raises
BindingConflictError.
"""

from __future__ import annotations

import asyncio
import secrets
import string
from typing import Optional

from parley.agent.engine import Engine
from parley.exceptions import BindingConflictError, InvalidArgumentError, ParleyError
from parley.memory.base import new_conversation_id
from parley.observability.logger import get_logger

log = get_logger(__name__)

_HANDLE_ALPHABET = string.ascii_letters + string.digits


def new_handle(length: int = 10) -> str:
    return "conv_" + "".join(secrets.choice(_HANDLE_ALPHABET) for _ in range(length))


class ConversationBinder:

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._bindings: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, handle: Optional[str] = None) -> tuple[str, str]:
        """Return (handle, internal_session_id), creating the binding if needed."""
        async with self._lock:
            if handle and handle.strip():
                handle = handle.strip()
                existing = self._bindings.get(handle)
                if existing is not None:
                    return handle, existing
                # Creation happens under the lock so a racing resolve of the
                # same handle can't mint a second session.
                session_id = await self._new_session(handle)
            else:
                handle = new_handle()
                while handle in self._bindings:
                    handle = new_handle()
                session_id = self._engine.get_conversation_id()
                if not session_id:
                    session_id = await self._new_session(handle)

            self._bindings[handle] = session_id
        log.info("binder.bound", handle=handle, conversation_id=session_id)
        return handle, session_id

    async def _new_session(self, handle: str) -> str:
        try:
            return await self._engine.new_conversation(title=handle)
        except ParleyError as e:
            log.warning(
                "binder.create_failed",
                handle=handle,
                error=str(e),
                error_type=type(e).__name__,
            )
            return new_conversation_id()

    async def bind(self, handle: str, session_id: str) -> None:
        """Bind explicitly. Idempotent for the same pair."""
        if not handle or not handle.strip() or not session_id or not session_id.strip():
            raise InvalidArgumentError("handle and session id must not be empty")
        async with self._lock:
            existing = self._bindings.get(handle)
            if existing is not None and existing != session_id:
                raise BindingConflictError(handle, existing, session_id)
            self._bindings[handle] = session_id
        log.info("binder.bound", handle=handle, conversation_id=session_id)

    async def lookup(self, handle: str) -> Optional[str]:
        async with self._lock:
            return self._bindings.get(handle)

    async def bindings(self) -> dict[str, str]:
        """Snapshot of the whole table."""
        async with self._lock:
            return dict(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)
