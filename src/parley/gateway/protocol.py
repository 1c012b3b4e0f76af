"""
gateway/protocol.py — Server-Sent Events wire framing

Every StreamEvent maps to exactly one SSE frame:

    meta      event: meta      data: {"conversation_id": ..., "agent_conversation_id": ...}
    thinking  event: thinking  data: {"phase": ..., "message": ...}
    content                    data: "<JSON-escaped delta>"
    error     event: error     data: {"message": ...}
    done      event: done      data: done

Content frames carry no event name so plain EventSource `onmessage`
handlers receive the deltas. Nothing is written after the done frame.
"""

from __future__ import annotations

import json
from typing import Any

from parley.agent.events import EventKind, StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _frame(data: str, event: str | None = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n"


def _json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False)


def encode_event(event: StreamEvent) -> str:
    """Render one event as an SSE frame."""
    if event.kind is EventKind.META:
        return _frame(_json(event.data), "meta")
    if event.kind is EventKind.THINKING:
        phase = event.phase.value if event.phase else ""
        return _frame(_json({"phase": phase, "message": event.text}), "thinking")
    if event.kind is EventKind.CONTENT:
        return _frame(_json(event.text))
    if event.kind is EventKind.ERROR:
        return _frame(_json({"message": event.text}), "error")
    return _frame("done", "done")
