"""
brain/types.py — Parley Message Models

Shared types passed between the engine, the memory stores and the model
backends. Messages are immutable once created; a Prompt is the ordered,
bounded slice of a conversation handed to a backend.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Message
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """A single conversation entry. Frozen: appended messages never change."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    def to_chat(self) -> dict[str, str]:
        """Provider chat format: {"role": ..., "content": ...}."""
        return {"role": self.role.value, "content": self.content}


# ─────────────────────────────────────────────────────────────────────────────
# Prompt
# ─────────────────────────────────────────────────────────────────────────────


class Prompt(BaseModel):
    """
    Ordered messages for one backend call.

    The first message is the system instruction; the rest is the bounded
    history window, oldest first.
    """

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()

    @classmethod
    def build(
        cls,
        system_instruction: str,
        history: list[Message],
        limit: int,
    ) -> "Prompt":
        window = history[-limit:] if limit > 0 else []
        return cls(messages=(Message.system(system_instruction), *window))

    @property
    def history(self) -> tuple[Message, ...]:
        return self.messages[1:]

    def to_chat(self) -> list[dict[str, str]]:
        return [m.to_chat() for m in self.messages]
