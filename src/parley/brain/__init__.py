"""
brain/__init__.py — Parley Model Backends
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from parley.brain.base import ModelBackend, call_with_backoff
from parley.brain.ollama_backend import OllamaBackend
from parley.brain.openai_backend import OpenAIBackend
from parley.brain.types import Message, Prompt, Role
from parley.exceptions import InitError

if TYPE_CHECKING:
    from parley.config.settings import Settings

__all__ = [
    "ModelBackend",
    "OllamaBackend",
    "OpenAIBackend",
    "Message",
    "Prompt",
    "Role",
    "call_with_backoff",
    "create_backend",
]


def create_backend(settings: "Settings") -> ModelBackend:
    """Build the backend named by settings.llm.provider."""
    llm = settings.llm
    if llm.provider == "openai":
        if not settings.openai_api_key:
            raise InitError("llm.provider 'openai' requires OPENAI_API_KEY")
        return OpenAIBackend(
            model=llm.model,
            api_key=settings.openai_api_key,
            base_url=settings.backend_base_url,
            temperature=llm.temperature,
            max_tokens=llm.max_tokens,
            timeout_seconds=llm.timeout_seconds,
            retry=llm.retry,
        )
    return OllamaBackend(
        model=llm.model,
        base_url=settings.backend_base_url or "http://localhost:11434",
        temperature=llm.temperature,
        max_tokens=llm.max_tokens,
        timeout_seconds=llm.timeout_seconds,
        retry=llm.retry,
        load_retry=llm.load_retry,
    )
