"""
agent/events.py — Streaming event protocol

A streamed turn delivers, in order:

    meta → thinking(analyzing)
         → [thinking(tool_call) → thinking(tool_result | tool_error)]
         → thinking(generating) → content … → done

A failed turn emits an error event before done. `done` is never sent by a
producer: it is synthesised by EventChannel when the channel is closed, so
it is always the last event and appears exactly once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from parley.exceptions import ChannelClosedError


class EventKind(str, Enum):
    META = "meta"
    THINKING = "thinking"
    CONTENT = "content"
    ERROR = "error"
    DONE = "done"


class ThinkingPhase(str, Enum):
    ANALYZING = "analyzing"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    TOOL_ERROR = "tool_error"
    GENERATING = "generating"


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    text: str = ""
    phase: Optional[ThinkingPhase] = None
    data: dict[str, Any] = field(default_factory=dict)

    # ── Factories ─────────────────────────────────────────────────────────────

    @classmethod
    def meta(cls, conversation_id: str, agent_conversation_id: str) -> "StreamEvent":
        return cls(
            kind=EventKind.META,
            data={
                "conversation_id": conversation_id,
                "agent_conversation_id": agent_conversation_id,
            },
        )

    @classmethod
    def thinking(cls, phase: ThinkingPhase, message: str) -> "StreamEvent":
        return cls(kind=EventKind.THINKING, phase=phase, text=message)

    @classmethod
    def content(cls, delta: str) -> "StreamEvent":
        return cls(kind=EventKind.CONTENT, text=delta)

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(kind=EventKind.ERROR, text=message)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(kind=EventKind.DONE)

    def marker(self) -> str:
        """Inline progress marker, e.g. `[THINKING:tool_call:Calling calculator]`."""
        if self.kind is not EventKind.THINKING or self.phase is None:
            return ""
        return f"[THINKING:{self.phase.value}:{self.text}]"


_CLOSE = object()


class EventChannel:
    """
    Bounded single-consumer event queue.

    send() applies backpressure once `maxsize` events are buffered and
    raises ChannelClosedError after close(). close() never blocks and may be
    called any number of times; only the first call has an effect. Iterating
    the channel yields every sent event, then exactly one DONE, then stops.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosedError(f"Cannot send {event.kind.value} event: channel closed")
        await self._queue.put(event)

    def close(self) -> bool:
        """Close the channel. Returns True on the call that actually closed it."""
        if self._closed:
            return False
        self._closed = True
        # A full queue needs no wake-up marker: the consumer is not waiting and
        # sees the closed flag once it has drained the buffer.
        if not self._queue.full():
            self._queue.put_nowait(_CLOSE)
        return True

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        if self._closed and self._queue.empty():
            self._finished = True
            return StreamEvent.done()
        item = await self._queue.get()
        if item is _CLOSE:
            self._finished = True
            return StreamEvent.done()
        return item
