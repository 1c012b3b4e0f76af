"""
agent/engine.py — Parley Orchestration Engine

Runs one conversational turn as a two-phase protocol:

    BuildingPrompt → AwaitingPreResponse
        ├─ no tool call  → Respond
        └─ tool call     → Executing → InjectingResult
                           → AwaitingFinalResponse → Respond

Phase 1 is always a single non-streamed generation over the system
instruction plus the most recent `history_limit` messages. If its output
carries a tool call, exactly one capability is invoked, its result (or a
failure description) is appended as a system message and phase 2
regenerates from the rebuilt prompt. process() returns the reply;
process_stream() pushes meta/thinking/content events into an EventChannel
and always closes it.

Session ids are threaded explicitly through every call. The engine keeps
an "active" id only for the get/set_conversation_id contract and as the
default when no id is passed. Each turn reloads the session's transcript
from memory, and turns on the same session are serialised by a
per-session asyncio.Lock.

Persistence is best-effort: a failed write is logged and the turn goes on.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from parley.agent.events import EventChannel, StreamEvent, ThinkingPhase
from parley.agent.tool_call import DEFAULT_LEGACY_MARKER, ToolInvocation, extract_tool_call
from parley.brain.base import ModelBackend
from parley.brain.types import Message, Prompt, Role
from parley.config.settings import DEFAULT_FALLBACK_MESSAGE, DEFAULT_SYSTEM_PROMPT
from parley.exceptions import (
    ConversationNotFoundError,
    InitError,
    InvalidArgumentError,
    ParleyError,
)
from parley.memory.base import ConversationMemory
from parley.observability.logger import bind_conversation, clear_conversation, get_logger
from parley.tools.base import Params
from parley.tools.registry import CapabilityRegistry

if TYPE_CHECKING:
    from parley.config.settings import Settings

log = get_logger(__name__)


class TurnPhase(str, Enum):
    BUILDING_PROMPT = "building_prompt"
    AWAITING_PRE_RESPONSE = "awaiting_pre_response"
    EXECUTING = "executing"
    INJECTING_RESULT = "injecting_result"
    AWAITING_FINAL_RESPONSE = "awaiting_final_response"
    RESPOND = "respond"


@dataclass(frozen=True)
class ToolOutcome:
    """Result of the turn's single capability invocation: a value or an error, never both."""
    name: str
    ok: bool
    value: Any = None
    error: str = ""

    def as_text(self) -> str:
        if self.ok:
            return f"Tool ({self.name}) output: {self.value}"
        return f"Tool {self.name} failed: {self.error}"


class Engine:

    def __init__(
        self,
        memory: ConversationMemory,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = 10,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        legacy_marker: str = DEFAULT_LEGACY_MARKER,
    ) -> None:
        self._memory = memory
        self.system_prompt = system_prompt
        self.history_limit = history_limit
        self.fallback_message = fallback_message
        self.legacy_marker = legacy_marker

        self._backend: Optional[ModelBackend] = None
        self._registry: Optional[CapabilityRegistry] = None
        self._active_id: Optional[str] = None
        # Entries vanish once no turn holds or awaits the lock
        self._session_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(cls, settings: "Settings", memory: ConversationMemory) -> "Engine":
        return cls(
            memory=memory,
            system_prompt=settings.agent.system_prompt,
            history_limit=settings.agent.history_limit,
            fallback_message=settings.agent.fallback_message,
            legacy_marker=settings.agent.legacy_marker,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def initialize(self, backend: ModelBackend, registry: CapabilityRegistry) -> str:
        """
        Attach collaborators and create the first conversation, which becomes
        the active one. Raises InitError if the conversation cannot be created.
        """
        self._backend = backend
        self._registry = registry
        try:
            cid = await self._memory.create_conversation(title="New conversation")
        except ParleyError as e:
            log.error("engine.init_failed", error=str(e), error_type=type(e).__name__)
            raise InitError(f"Could not create the initial conversation: {e}") from e
        self._active_id = cid
        log.info(
            "engine.initialized",
            conversation_id=cid,
            backend=backend.name,
            capabilities=registry.list_names(),
        )
        return cid

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.aclose()
        await self._memory.close()

    @property
    def memory(self) -> ConversationMemory:
        return self._memory

    @property
    def registry(self) -> Optional[CapabilityRegistry]:
        return self._registry

    # ─────────────────────────────────────────────────────────────────────────
    # Conversation identity
    # ─────────────────────────────────────────────────────────────────────────

    def get_conversation_id(self) -> str:
        return self._active_id or ""

    def set_conversation_id(self, conversation_id: str) -> None:
        """Make `conversation_id` the active session. Empty ids are rejected untouched."""
        if not conversation_id or not conversation_id.strip():
            raise InvalidArgumentError("conversation id must not be empty")
        self._active_id = conversation_id
        log.debug("engine.active_conversation", conversation_id=conversation_id)

    async def new_conversation(self, title: str = "") -> str:
        """Create a fresh internal session (does not change the active one)."""
        return await self._memory.create_conversation(title=title)

    # ─────────────────────────────────────────────────────────────────────────
    # Turns
    # ─────────────────────────────────────────────────────────────────────────

    async def process(self, text: str, *, session_id: Optional[str] = None) -> str:
        """Run one turn and return the final reply."""
        backend = self._require_backend()
        sid = self._resolve(session_id)

        async with self._turn_lock(sid):
            bind_conversation(sid)
            try:
                log.info("engine.turn_start", streaming=False, chars=len(text))
                history = await self._begin_turn(sid, text)

                self._enter(TurnPhase.AWAITING_PRE_RESPONSE)
                pre = await backend.generate(self._build_prompt(history))
                invocation = extract_tool_call(pre, self.legacy_marker)

                if invocation is None:
                    reply = pre
                else:
                    outcome = await self._run_tool(invocation)
                    await self._inject(sid, history, outcome)
                    self._enter(TurnPhase.AWAITING_FINAL_RESPONSE)
                    reply = await backend.generate(self._build_prompt(history))

                reply = self._or_fallback(reply)
                self._enter(TurnPhase.RESPOND)
                await self._persist(sid, Role.ASSISTANT, reply)
                log.info("engine.turn_complete", tool=invocation.name if invocation else None)
                return reply
            finally:
                clear_conversation()

    async def process_stream(
        self,
        text: str,
        channel: EventChannel,
        *,
        session_id: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> str:
        """
        Run one turn, pushing events into `channel`. The channel is closed
        exactly once when this returns, raises or is cancelled.

        Returns the persisted reply (the concatenated content deltas, or the
        fallback message when the backend produced nothing).
        """
        try:
            backend = self._require_backend()
            sid = self._resolve(session_id)
            async with self._turn_lock(sid):
                bind_conversation(sid, external_id)
                log.info("engine.turn_start", streaming=True, chars=len(text))
                await channel.send(StreamEvent.meta(external_id or sid, sid))

                history = await self._begin_turn(sid, text)
                await channel.send(
                    StreamEvent.thinking(ThinkingPhase.ANALYZING, "Analyzing your question...")
                )

                self._enter(TurnPhase.AWAITING_PRE_RESPONSE)
                prompt = self._build_prompt(history)
                pre = await backend.generate(prompt)
                invocation = extract_tool_call(pre, self.legacy_marker)

                if invocation is not None:
                    await channel.send(
                        StreamEvent.thinking(
                            ThinkingPhase.TOOL_CALL, f"Calling tool: {invocation.name}"
                        )
                    )
                    outcome = await self._run_tool(invocation)
                    if outcome.ok:
                        await channel.send(
                            StreamEvent.thinking(
                                ThinkingPhase.TOOL_RESULT,
                                f"Tool {invocation.name} returned, composing the reply...",
                            )
                        )
                    else:
                        await channel.send(
                            StreamEvent.thinking(
                                ThinkingPhase.TOOL_ERROR,
                                f"Tool {invocation.name} failed: {outcome.error}",
                            )
                        )
                    await self._inject(sid, history, outcome)
                    prompt = self._build_prompt(history)

                await channel.send(
                    StreamEvent.thinking(ThinkingPhase.GENERATING, "Generating response...")
                )
                self._enter(TurnPhase.AWAITING_FINAL_RESPONSE)
                parts: list[str] = []
                # Leading blank deltas are held until real text arrives, so an
                # all-blank stream emits only the fallback.
                held: Optional[list[str]] = []
                async with aclosing(backend.generate_stream(prompt)) as deltas:
                    async for delta in deltas:
                        parts.append(delta)
                        if held is not None:
                            if not delta.strip():
                                held.append(delta)
                                continue
                            for pending in held:
                                await channel.send(StreamEvent.content(pending))
                            held = None
                        await channel.send(StreamEvent.content(delta))

                reply = "".join(parts)
                if not reply.strip():
                    reply = self.fallback_message
                    await channel.send(StreamEvent.content(reply))

                self._enter(TurnPhase.RESPOND)
                await self._persist(sid, Role.ASSISTANT, reply)
                log.info(
                    "engine.turn_complete",
                    tool=invocation.name if invocation else None,
                    deltas=len(parts),
                )
                return reply

        except ParleyError as e:
            log.error("engine.turn_failed", error=str(e), error_type=type(e).__name__)
            if not channel.closed:
                await channel.send(StreamEvent.error(str(e)))
            raise
        except asyncio.CancelledError:
            log.info("engine.turn_cancelled")
            raise
        finally:
            channel.close()
            clear_conversation()

    async def execute_tool(self, name: str, params: Params) -> Any:
        """Invoke a capability directly. CapabilityNotFoundError if unknown."""
        if self._registry is None:
            raise InitError("Engine not initialised: no capability registry")
        return await self._registry.invoke(name, params)

    async def learn(self, feedback: str, *, session_id: Optional[str] = None) -> None:
        """Record user feedback as a timestamped system message."""
        if not feedback or not feedback.strip():
            raise InvalidArgumentError("feedback must not be empty")
        sid = self._resolve(session_id)
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        async with self._turn_lock(sid):
            await self._memory.add_message(sid, Role.SYSTEM, f"Feedback ({stamp}): {feedback}")
        log.info("engine.feedback_recorded", conversation_id=sid)

    def system_instruction(self) -> str:
        """System prompt plus the catalogue of registered capabilities."""
        catalogue = self._registry.describe() if self._registry is not None else {}
        if not catalogue:
            return self.system_prompt
        lines = "\n".join(f"- {name}: {desc}" for name, desc in catalogue.items())
        return f"{self.system_prompt}\n\nAvailable tools:\n{lines}"

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _require_backend(self) -> ModelBackend:
        if self._backend is None:
            raise InitError("Engine not initialised: call initialize() first")
        return self._backend

    def _resolve(self, session_id: Optional[str]) -> str:
        if session_id is not None:
            if not session_id.strip():
                raise InvalidArgumentError("session id must not be empty")
            return session_id
        if not self._active_id:
            raise InitError("Engine has no active conversation")
        return self._active_id

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    def _enter(self, phase: TurnPhase) -> None:
        log.debug("engine.phase", phase=phase.value)

    def _or_fallback(self, text: str) -> str:
        return text if text and text.strip() else self.fallback_message

    def _build_prompt(self, history: list[Message]) -> Prompt:
        return Prompt.build(self.system_instruction(), history, self.history_limit)

    async def _begin_turn(self, session_id: str, text: str) -> list[Message]:
        """Reload the session transcript and record the user's message."""
        self._enter(TurnPhase.BUILDING_PROMPT)
        history = await self._load_history(session_id)
        history.append(Message.user(text))
        await self._persist(session_id, Role.USER, text)
        return history

    async def _load_history(self, session_id: str) -> list[Message]:
        try:
            conv = await self._memory.get_conversation(session_id)
            return list(conv.messages)
        except ConversationNotFoundError:
            try:
                await self._memory.create_conversation(conversation_id=session_id)
                log.info("engine.conversation_created", conversation_id=session_id)
            except ParleyError as e:
                log.warning("engine.create_failed", error=str(e), error_type=type(e).__name__)
        except ParleyError as e:
            log.warning("engine.history_unavailable", error=str(e), error_type=type(e).__name__)
        return []

    async def _persist(self, session_id: str, role: Role, content: str) -> None:
        try:
            await self._memory.add_message(session_id, role, content)
        except ParleyError as e:
            log.warning(
                "engine.persist_failed",
                role=role.value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _run_tool(self, invocation: ToolInvocation) -> ToolOutcome:
        self._enter(TurnPhase.EXECUTING)
        log.info(
            "engine.tool_call",
            capability=invocation.name,
            source=invocation.source.value,
        )
        try:
            value = await self.execute_tool(invocation.name, invocation.params)
        except Exception as e:
            # Capability failures become text for the model; the turn continues.
            log.warning(
                "engine.tool_failed",
                capability=invocation.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolOutcome(name=invocation.name, ok=False, error=str(e))
        return ToolOutcome(name=invocation.name, ok=True, value=value)

    async def _inject(self, session_id: str, history: list[Message], outcome: ToolOutcome) -> None:
        self._enter(TurnPhase.INJECTING_RESULT)
        message = Message.system(outcome.as_text())
        history.append(message)
        await self._persist(session_id, Role.SYSTEM, message.content)
