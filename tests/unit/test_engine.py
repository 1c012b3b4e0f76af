"""
tests/unit/test_engine.py — Engine turn protocol (non-streamed)

Uses ScriptedBackend from conftest, so no model is contacted.

Covers:
  - plain replies and the two-phase tool protocol
  - failed / unknown capabilities become text for the model
  - empty output falls back to the configured message
  - history window, reloads and best-effort persistence
  - conversation identity and feedback
  - what is already stored when each backend call starts
"""

from __future__ import annotations

import asyncio
import gc

import pytest

from parley.agent.engine import Engine, ToolOutcome
from parley.brain.types import Role
from parley.exceptions import (
    InitError,
    InvalidArgumentError,
    PersistenceError,
)
from parley.memory.in_memory import InMemoryConversationStore


# ─────────────────────────────────────────────────────────────────────────────
# ToolOutcome
# ─────────────────────────────────────────────────────────────────────────────


class TestToolOutcome:
    def test_success_text(self):
        assert ToolOutcome(name="calculator", ok=True, value=5).as_text() == (
            "Tool (calculator) output: 5"
        )

    def test_failure_text(self):
        assert ToolOutcome(name="calculator", ok=False, error="boom").as_text() == (
            "Tool calculator failed: boom"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle & identity
# ─────────────────────────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_creates_active_conversation(self, make_engine, scripted, store):
        engine = await make_engine(scripted())
        cid = engine.get_conversation_id()
        assert cid.startswith("conv_")
        conv = await store.get_conversation(cid)
        assert conv.messages == []

    @pytest.mark.asyncio
    async def test_initialize_failure_is_init_error(self, scripted, registry):
        class BrokenStore(InMemoryConversationStore):
            async def create_conversation(self, title="", conversation_id=None):
                raise PersistenceError("read-only filesystem")

        engine = Engine(memory=BrokenStore())
        with pytest.raises(InitError):
            await engine.initialize(scripted(), registry)

    @pytest.mark.asyncio
    async def test_process_before_initialize_raises(self, store):
        engine = Engine(memory=store)
        with pytest.raises(InitError):
            await engine.process("hi")

    def test_get_conversation_id_empty_before_init(self, store):
        assert Engine(memory=store).get_conversation_id() == ""

    @pytest.mark.asyncio
    async def test_set_conversation_id(self, make_engine, scripted):
        engine = await make_engine(scripted())
        engine.set_conversation_id("conv_custom")
        assert engine.get_conversation_id() == "conv_custom"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "   "])
    async def test_set_empty_conversation_id_rejected(self, make_engine, scripted, bad):
        engine = await make_engine(scripted())
        before = engine.get_conversation_id()
        with pytest.raises(InvalidArgumentError):
            engine.set_conversation_id(bad)
        assert engine.get_conversation_id() == before

    @pytest.mark.asyncio
    async def test_close_releases_backend(self, make_engine, scripted):
        backend = scripted()
        engine = await make_engine(backend)
        await engine.close()
        assert backend.closed

    @pytest.mark.asyncio
    async def test_system_instruction_lists_capabilities(self, make_engine, scripted):
        engine = await make_engine(scripted())
        instruction = engine.system_instruction()
        assert instruction.startswith("You are a test agent.")
        assert "Available tools:" in instruction
        assert "- calculator:" in instruction
        assert "- echo: Repeat the 'text' parameter" in instruction


# ─────────────────────────────────────────────────────────────────────────────
# Turns
# ─────────────────────────────────────────────────────────────────────────────


class TestProcess:
    @pytest.mark.asyncio
    async def test_plain_reply(self, make_engine, scripted, store):
        backend = scripted(replies=["Hello there!"])
        engine = await make_engine(backend)

        reply = await engine.process("hi")

        assert reply == "Hello there!"
        assert len(backend.prompts) == 1
        conv = await store.get_conversation(engine.get_conversation_id())
        assert [(m.role, m.content) for m in conv.messages] == [
            (Role.USER, "hi"),
            (Role.ASSISTANT, "Hello there!"),
        ]

    @pytest.mark.asyncio
    async def test_prompt_starts_with_system_instruction(self, make_engine, scripted):
        backend = scripted(replies=["ok"])
        engine = await make_engine(backend)
        await engine.process("hi")

        prompt = backend.prompts[0]
        assert prompt.messages[0].role == Role.SYSTEM
        assert prompt.messages[0].content == engine.system_instruction()
        assert prompt.messages[-1].content == "hi"

    @pytest.mark.asyncio
    async def test_tool_call_runs_two_phases(self, make_engine, scripted, store):
        backend = scripted(
            replies=[
                '{"tool": "calculator", "params": {"operation": "add", "a": 2, "b": 3}}',
                "2 + 3 is 5.",
            ]
        )
        engine = await make_engine(backend)

        reply = await engine.process("what is 2+3?")

        assert reply == "2 + 3 is 5."
        assert len(backend.prompts) == 2
        injected = backend.prompts[1].messages[-1]
        assert injected.role == Role.SYSTEM
        assert injected.content == "Tool (calculator) output: 5"

        conv = await store.get_conversation(engine.get_conversation_id())
        assert [m.role for m in conv.messages] == [Role.USER, Role.SYSTEM, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_legacy_key_value_call(self, make_engine, scripted):
        backend = scripted(
            replies=["Use tool: calculator operation=multiply, a=6, b=7", "42"]
        )
        engine = await make_engine(backend)
        await engine.process("6 times 7")
        assert backend.prompts[1].messages[-1].content == "Tool (calculator) output: 42"

    @pytest.mark.asyncio
    async def test_only_one_tool_call_per_turn(self, make_engine, scripted):
        call = '{"tool": "echo", "params": {"text": "x"}}'
        backend = scripted(replies=[call, call])
        engine = await make_engine(backend)

        reply = await engine.process("loop please")

        # The second directive is returned verbatim, not executed
        assert reply == call
        assert len(backend.prompts) == 2

    @pytest.mark.asyncio
    async def test_unknown_capability_becomes_text(self, make_engine, scripted):
        backend = scripted(replies=['{"tool": "nope", "params": {}}', "Sorry."])
        engine = await make_engine(backend)

        reply = await engine.process("do the thing")

        assert reply == "Sorry."
        assert backend.prompts[1].messages[-1].content == (
            "Tool nope failed: Capability not found: 'nope'"
        )

    @pytest.mark.asyncio
    async def test_failing_capability_becomes_text(self, make_engine, scripted):
        backend = scripted(replies=['{"tool": "explode", "params": {}}', "It broke."])
        engine = await make_engine(backend)

        assert await engine.process("go") == "It broke."
        assert backend.prompts[1].messages[-1].content == "Tool explode failed: kaboom"

    @pytest.mark.asyncio
    async def test_division_by_zero_reported(self, make_engine, scripted):
        backend = scripted(
            replies=[
                '{"tool": "calculator", "params": {"operation": "divide", "a": 1, "b": 0}}',
                "Can't do that.",
            ]
        )
        engine = await make_engine(backend)
        await engine.process("1/0")
        assert backend.prompts[1].messages[-1].content == (
            "Tool calculator failed: division by zero"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("empty", ["", "   \n"])
    async def test_empty_reply_uses_fallback(self, make_engine, scripted, store, empty):
        engine = await make_engine(scripted(replies=[empty]), fallback_message="Nothing to say.")

        reply = await engine.process("hi")

        assert reply == "Nothing to say."
        conv = await store.get_conversation(engine.get_conversation_id())
        assert conv.messages[-1].content == "Nothing to say."

    @pytest.mark.asyncio
    async def test_empty_phase_two_uses_fallback(self, make_engine, scripted):
        backend = scripted(replies=['{"tool": "echo", "params": {"text": "x"}}', ""])
        engine = await make_engine(backend, fallback_message="fallback")
        assert await engine.process("hi") == "fallback"

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, make_engine, scripted):
        from parley.exceptions import BackendConnectionError

        engine = await make_engine(scripted(replies=[BackendConnectionError("down")]))
        with pytest.raises(BackendConnectionError):
            await engine.process("hi")

    @pytest.mark.asyncio
    async def test_blank_session_id_rejected(self, make_engine, scripted):
        engine = await make_engine(scripted())
        with pytest.raises(InvalidArgumentError):
            await engine.process("hi", session_id="  ")


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────


class TestHistory:
    @pytest.mark.asyncio
    async def test_window_is_bounded(self, make_engine, scripted):
        backend = scripted(replies=[f"answer {i}" for i in range(7)])
        engine = await make_engine(backend)

        for i in range(7):
            await engine.process(f"question {i}")

        last = backend.prompts[-1]
        assert len(last.messages) == 1 + 10
        assert last.history[-1].content == "question 6"
        # 12 earlier messages + the new one; the oldest three fall out
        assert last.history[0].content == "answer 1"

    @pytest.mark.asyncio
    async def test_custom_history_limit(self, make_engine, scripted):
        backend = scripted(replies=["a", "b", "c"])
        engine = await make_engine(backend, history_limit=2)
        for text in ("one", "two", "three"):
            await engine.process(text)
        assert [m.content for m in backend.prompts[-1].history] == ["b", "three"]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, make_engine, scripted):
        backend = scripted(replies=["A1", "B1", "A2"])
        engine = await make_engine(backend)
        other = await engine.new_conversation()

        await engine.process("for A")
        await engine.process("for B", session_id=other)
        await engine.process("again A")

        assert [m.content for m in backend.prompts[-1].history] == ["for A", "A1", "again A"]

    @pytest.mark.asyncio
    async def test_unknown_session_is_created(self, make_engine, scripted, store):
        engine = await make_engine(scripted(replies=["hi back"]))

        await engine.process("hello", session_id="conv_external")

        conv = await store.get_conversation("conv_external")
        assert [m.content for m in conv.messages] == ["hello", "hi back"]

    @pytest.mark.asyncio
    async def test_unreadable_history_starts_empty(self, make_engine, scripted, store):
        backend = scripted(replies=["first", "second"])
        engine = await make_engine(backend)
        await engine.process("one")

        store.fail_reads = True
        assert await engine.process("two") == "second"
        assert [m.content for m in backend.prompts[-1].history] == ["two"]

    @pytest.mark.asyncio
    async def test_persistence_failure_is_tolerated(self, make_engine, scripted, store):
        engine = await make_engine(scripted(replies=["still here"]))
        store.fail_writes = True

        assert await engine.process("hi") == "still here"
        conv = await store.get_conversation(engine.get_conversation_id())
        assert conv.messages == []

    @pytest.mark.asyncio
    async def test_turns_on_one_session_are_serialised(self, make_engine, scripted, store):
        class SlowBackend(scripted):
            async def generate(self, prompt):
                await asyncio.sleep(0.01)
                return await super().generate(prompt)

        engine = await make_engine(SlowBackend(replies=["r1", "r2"]))

        await asyncio.gather(engine.process("q1"), engine.process("q2"))

        conv = await store.get_conversation(engine.get_conversation_id())
        roles = [m.role for m in conv.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_session_locks_dropped_when_idle(self, make_engine, scripted):
        engine = await make_engine(scripted(replies=["a", "b", "c"]))
        for _ in range(3):
            await engine.process("hi", session_id=await engine.new_conversation())

        gc.collect()
        assert len(engine._session_locks) == 0


class TestOrdering:
    @pytest.mark.asyncio
    async def test_user_message_stored_before_phase_one(self, make_engine, snapshotting, store):
        backend = snapshotting(replies=["hello"])
        engine = await make_engine(backend)
        backend.session_id = engine.get_conversation_id()

        await engine.process("hi")

        assert backend.snapshots == [("generate", [Role.USER])]
        conv = await store.get_conversation(backend.session_id)
        assert [m.role for m in conv.messages] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_tool_result_stored_before_phase_two(self, make_engine, snapshotting):
        backend = snapshotting(
            replies=['{"tool": "calculator", "params": {"operation": "add", "a": 2, "b": 3}}', "5"]
        )
        engine = await make_engine(backend)
        backend.session_id = engine.get_conversation_id()

        await engine.process("2+3?")

        assert backend.snapshots == [
            ("generate", [Role.USER]),
            ("generate", [Role.USER, Role.SYSTEM]),
        ]


# ─────────────────────────────────────────────────────────────────────────────
# Tools & feedback
# ─────────────────────────────────────────────────────────────────────────────


class TestToolsAndFeedback:
    @pytest.mark.asyncio
    async def test_execute_tool_directly(self, make_engine, scripted):
        engine = await make_engine(scripted())
        result = await engine.execute_tool(
            "calculator", {"operation": "subtract", "a": 10, "b": 4}
        )
        assert result == 6

    @pytest.mark.asyncio
    async def test_execute_tool_without_registry(self, store):
        with pytest.raises(InitError):
            await Engine(memory=store).execute_tool("calculator", {})

    @pytest.mark.asyncio
    async def test_learn_records_system_message(self, make_engine, scripted, store):
        engine = await make_engine(scripted())

        await engine.learn("Answers were too long")

        conv = await store.get_conversation(engine.get_conversation_id())
        message = conv.messages[-1]
        assert message.role == Role.SYSTEM
        assert message.content.startswith("Feedback (")
        assert message.content.endswith("): Answers were too long")

    @pytest.mark.asyncio
    async def test_feedback_enters_later_prompts(self, make_engine, scripted):
        backend = scripted(replies=["ok"])
        engine = await make_engine(backend)
        await engine.learn("be brief")
        await engine.process("hi")
        assert "be brief" in backend.prompts[0].history[0].content

    @pytest.mark.asyncio
    async def test_empty_feedback_rejected(self, make_engine, scripted):
        engine = await make_engine(scripted())
        with pytest.raises(InvalidArgumentError):
            await engine.learn("  ")
