"""
agent/tool_call.py — Tool-call directive extraction

Models request a capability in free text using one of three formats,
checked in this order (first structurally valid match wins):

  1. structured  — the whole reply is a JSON object:
                       {"tool": "calculator", "params": {"a": 1}}
  2. fenced      — a fenced block whose info string names the tool:
                       ```tool:calculator
                       {"a": 1}
                       ```
  3. legacy      — a line starting with the marker phrase:
                       Use tool: calculator a=1, b=2
                   (parameters run to the end of that line only)

Fence and marker are only honoured at the start of a line, never inside
running prose. Parameter text is decoded by parse_params().
"""

from __future__ import annotations

import json
import re
from enum import Enum
from functools import lru_cache
from typing import Any, Optional

from pydantic import BaseModel, Field

from parley.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_LEGACY_MARKER = "Use tool:"

_NAME = r"[A-Za-z0-9_.\-]+"

_FENCED_RE = re.compile(
    rf"^[ \t]*```tool:[ \t]*(?P<name>{_NAME})[ \t]*\r?\n"
    r"(?P<body>.*?)"
    r"^[ \t]*```[ \t]*$",
    re.MULTILINE | re.DOTALL,
)


class CallFormat(str, Enum):
    STRUCTURED = "structured"
    FENCED = "fenced"
    LEGACY = "legacy"


class ToolInvocation(BaseModel):
    """A capability request parsed out of model output."""
    name: str
    params: dict[str, Any] = Field(default_factory=dict)
    source: CallFormat


# ─────────────────────────────────────────────────────────────────────────────
# Parameter decoding
# ─────────────────────────────────────────────────────────────────────────────


def parse_params(text: str) -> dict[str, Any]:
    """
    Decode parameter text. Never raises.

    A JSON object is used as-is. Otherwise the text is split on commas and
    each piece on its first '=' into a flat mapping of strings. Anything
    else yields an empty mapping.
    """
    text = (text or "").strip()
    if not text:
        return {}

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        decoded = None
    if isinstance(decoded, dict):
        return {str(k): v for k, v in decoded.items()}

    params: dict[str, Any] = {}
    for piece in text.split(","):
        if "=" not in piece:
            continue
        key, value = piece.split("=", 1)
        key = key.strip()
        if key:
            params[key] = value.strip()
    return params


# ─────────────────────────────────────────────────────────────────────────────
# Format matchers
# ─────────────────────────────────────────────────────────────────────────────


def _match_structured(text: str) -> Optional[ToolInvocation]:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    try:
        decoded = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, dict):
        return None

    name = decoded.get("tool")
    if not isinstance(name, str) or not name.strip():
        return None
    if "params" not in decoded:
        return None
    params = decoded["params"]
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return None

    return ToolInvocation(
        name=name.strip(),
        params={str(k): v for k, v in params.items()},
        source=CallFormat.STRUCTURED,
    )


def _match_fenced(text: str) -> Optional[ToolInvocation]:
    match = _FENCED_RE.search(text)
    if match is None:
        return None
    return ToolInvocation(
        name=match.group("name"),
        params=parse_params(match.group("body")),
        source=CallFormat.FENCED,
    )


@lru_cache(maxsize=8)
def _legacy_pattern(marker: str) -> re.Pattern[str]:
    return re.compile(
        rf"^[ \t]*{re.escape(marker)}[ \t]*(?P<name>{_NAME})(?P<rest>[^\n]*)$",
        re.MULTILINE,
    )


def _match_legacy(text: str, marker: str) -> Optional[ToolInvocation]:
    match = _legacy_pattern(marker).search(text)
    if match is None:
        return None
    return ToolInvocation(
        name=match.group("name"),
        params=parse_params(match.group("rest")),
        source=CallFormat.LEGACY,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def extract_tool_call(
    text: str, legacy_marker: str = DEFAULT_LEGACY_MARKER
) -> Optional[ToolInvocation]:
    """Return the first tool call found in `text`, or None."""
    if not text or not text.strip():
        return None

    invocation = (
        _match_structured(text)
        or _match_fenced(text)
        or _match_legacy(text, legacy_marker)
    )
    if invocation is not None:
        log.debug(
            "tool_call.detected",
            capability=invocation.name,
            source=invocation.source.value,
            param_keys=sorted(invocation.params),
        )
    return invocation
