"""
tests/unit/conftest.py — Shared fakes for engine, relay and gateway tests

ScriptedBackend plays back canned replies instead of calling a model:
  - generate() pops the next entry of `replies`
  - generate_stream() yields the next entry of `streams` delta by delta
An entry that is an exception instance is raised instead.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional

import pytest

from parley.agent.engine import Engine
from parley.brain.base import ModelBackend
from parley.brain.types import Prompt, Role
from parley.exceptions import PersistenceError
from parley.memory.in_memory import InMemoryConversationStore
from parley.tools import default_registry
from parley.tools.registry import CapabilityRegistry


class ScriptedBackend(ModelBackend):

    name = "scripted"

    def __init__(
        self,
        replies: Optional[list[Any]] = None,
        streams: Optional[list[Any]] = None,
        stream_gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.stream_gate = stream_gate
        self.prompts: list[Prompt] = []
        self.stream_prompts: list[Prompt] = []
        self.closed = False
        self.reachable = True

    async def generate(self, prompt: Prompt) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def generate_stream(self, prompt: Prompt) -> AsyncIterator[str]:
        self.stream_prompts.append(prompt)
        script = self.streams.pop(0) if self.streams else []
        if isinstance(script, BaseException):
            raise script
        for delta in script:
            if isinstance(delta, BaseException):
                raise delta
            if self.stream_gate is not None:
                await self.stream_gate.wait()
            yield delta

    async def health_check(self) -> bool:
        return self.reachable

    async def aclose(self) -> None:
        self.closed = True


class FlakyStore(InMemoryConversationStore):
    """In-memory store whose writes can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_creates = False
        self.fail_writes = False
        self.fail_reads = False
        self.fail_roles: set[Role] = set()

    async def create_conversation(
        self, title: str = "", conversation_id: Optional[str] = None
    ) -> str:
        if self.fail_creates:
            raise PersistenceError("disk full")
        return await super().create_conversation(title=title, conversation_id=conversation_id)

    async def add_message(self, conversation_id: str, role: Role, content: str):
        if self.fail_writes or role in self.fail_roles:
            raise PersistenceError("disk full")
        return await super().add_message(conversation_id, role, content)

    async def get_conversation(self, conversation_id: str):
        if self.fail_reads:
            raise PersistenceError("disk unreadable")
        return await super().get_conversation(conversation_id)


class SnapshotBackend(ScriptedBackend):
    """ScriptedBackend that records the stored roles of one session at every call."""

    def __init__(self, store: InMemoryConversationStore, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.store = store
        self.session_id = ""
        self.snapshots: list[tuple[str, list[Role]]] = []

    async def _snapshot(self, label: str) -> None:
        conv = await self.store.get_conversation(self.session_id)
        self.snapshots.append((label, [m.role for m in conv.messages]))

    async def generate(self, prompt: Prompt) -> str:
        await self._snapshot("generate")
        return await super().generate(prompt)

    async def generate_stream(self, prompt: Prompt) -> AsyncIterator[str]:
        await self._snapshot("stream_start")
        async for delta in super().generate_stream(prompt):
            yield delta
        # Resumed only once the engine has finished sending the last delta
        await self._snapshot("stream_end")


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def registry() -> CapabilityRegistry:
    registry = default_registry()

    @registry.capability("echo", "Repeat the 'text' parameter")
    async def echo(params):
        return params.get("text", "")

    @registry.capability("explode", "Always fails")
    async def explode(params):
        raise RuntimeError("kaboom")

    return registry


@pytest.fixture
def scripted():
    """Factory: scripted(replies=[...], streams=[[...]])."""
    return ScriptedBackend


@pytest.fixture
def snapshotting(store):
    """Factory: snapshotting(replies=[...], streams=[[...]]) bound to the `store` fixture."""

    def _make(*args: Any, **kwargs: Any) -> SnapshotBackend:
        return SnapshotBackend(store, *args, **kwargs)

    return _make


@pytest.fixture
def make_engine(store, registry):
    """Build and initialise an Engine around a ScriptedBackend."""

    async def _make(backend: ModelBackend, **kwargs: Any) -> Engine:
        engine = Engine(memory=store, system_prompt="You are a test agent.", **kwargs)
        await engine.initialize(backend, registry)
        return engine

    return _make

