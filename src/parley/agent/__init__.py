"""
agent/__init__.py — Parley Agent Core
"""

from __future__ import annotations

from parley.agent.binder import ConversationBinder
from parley.agent.engine import Engine, ToolOutcome, TurnPhase
from parley.agent.events import EventChannel, EventKind, StreamEvent, ThinkingPhase
from parley.agent.tool_call import CallFormat, ToolInvocation, extract_tool_call, parse_params

__all__ = [
    "ConversationBinder",
    "Engine",
    "ToolOutcome",
    "TurnPhase",
    "EventChannel",
    "EventKind",
    "StreamEvent",
    "ThinkingPhase",
    "CallFormat",
    "ToolInvocation",
    "extract_tool_call",
    "parse_params",
]
