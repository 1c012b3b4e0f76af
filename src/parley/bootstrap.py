"""
bootstrap.py — Agent Stack Factory

Wires backend → registry → memory → engine → binder from settings.
Shared by the HTTP server and the interactive CLI so neither duplicates
the chain. Any component can be passed in pre-built (tests do this).

Usage:
    from parley.bootstrap import bootstrap_agent_stack
    stack = await bootstrap_agent_stack(settings)
    reply = await stack.engine.process("hello")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from parley.agent.binder import ConversationBinder
from parley.agent.engine import Engine
from parley.brain import create_backend
from parley.brain.base import ModelBackend
from parley.config.settings import Settings
from parley.memory import create_memory
from parley.memory.base import ConversationMemory
from parley.observability.logger import get_logger
from parley.tools import default_registry
from parley.tools.registry import CapabilityRegistry

log = get_logger(__name__)


@dataclass
class AgentStack:
    """All wired components returned by bootstrap_agent_stack()."""
    settings: Settings
    engine: Engine
    binder: ConversationBinder
    registry: CapabilityRegistry
    backend: ModelBackend
    memory: ConversationMemory

    async def aclose(self) -> None:
        await self.engine.close()


async def bootstrap_agent_stack(
    settings: Settings,
    *,
    backend: Optional[ModelBackend] = None,
    memory: Optional[ConversationMemory] = None,
    registry: Optional[CapabilityRegistry] = None,
) -> AgentStack:
    """
    Build and initialise the full stack. Raises InitError if the engine
    cannot create its first conversation.
    """
    if backend is None:
        backend = create_backend(settings)
    if memory is None:
        memory = create_memory(settings)
    if registry is None:
        registry = default_registry()

    engine = Engine.from_settings(settings, memory)
    await engine.initialize(backend, registry)
    binder = ConversationBinder(engine)

    log.info(
        "bootstrap.ready",
        provider=settings.llm.provider,
        model=settings.llm.model,
        memory=settings.memory.backend,
        capabilities=len(registry),
    )
    return AgentStack(
        settings=settings,
        engine=engine,
        binder=binder,
        registry=registry,
        backend=backend,
        memory=memory,
    )
