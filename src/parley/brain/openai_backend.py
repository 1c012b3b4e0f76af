"""
brain/openai_backend.py — OpenAI-compatible backend

Works with the official API and any OpenAI-compatible endpoint (vLLM,
LiteLLM proxy, Ollama's /v1). The SDK's own retries are disabled;
connection failures and rate limits go through call_with_backoff().
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from parley.brain.base import ModelBackend, call_with_backoff
from parley.brain.types import Prompt
from parley.config.settings import RetryConfig
from parley.exceptions import (
    BackendConnectionError,
    BackendError,
    BackendTimeoutError,
)
from parley.observability.logger import get_logger

log = get_logger(__name__)


class OpenAIBackend(ModelBackend):

    name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: Optional[str] = None,     # None = official OpenAI endpoint
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 180.0,
        retry: Optional[RetryConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.retry = retry or RetryConfig()
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def generate(self, prompt: Prompt) -> str:
        log.debug("openai.generate.start", model=self.model, messages=len(prompt.messages))
        response = await call_with_backoff(
            lambda: self._create(prompt, stream=False), self.retry, backend=self.name
        )
        if not response.choices:
            return ""
        text = response.choices[0].message.content or ""
        log.debug("openai.generate.complete", model=self.model, chars=len(text))
        return text

    async def generate_stream(self, prompt: Prompt) -> AsyncIterator[str]:
        stream = await call_with_backoff(
            lambda: self._create(prompt, stream=True), self.retry, backend=self.name
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as e:
            raise _translate(e) from e

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except openai.APIError as e:
            log.warning("openai.health_check.failed", error=str(e), error_type=type(e).__name__)
            return False

    async def aclose(self) -> None:
        await self._client.close()

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _create(self, prompt: Prompt, stream: bool) -> Any:
        try:
            return await self._client.chat.completions.create(
                model=self.model,
                messages=prompt.to_chat(),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=stream,
            )
        except openai.APIError as e:
            raise _translate(e) from e


def _translate(e: openai.APIError) -> BackendError:
    """Map SDK errors onto the backend error taxonomy."""
    if isinstance(e, openai.APITimeoutError):
        return BackendTimeoutError(str(e), backend="openai")
    if isinstance(e, openai.APIConnectionError):
        return BackendConnectionError(str(e), backend="openai")
    if isinstance(e, openai.RateLimitError):
        return BackendConnectionError(str(e), backend="openai", status_code=429)
    if isinstance(e, openai.AuthenticationError):
        return BackendError(str(e), backend="openai", status_code=401)
    if isinstance(e, openai.BadRequestError):
        return BackendError(str(e), backend="openai", status_code=400)
    status = getattr(e, "status_code", None)
    if status is not None and status >= 500:
        return BackendConnectionError(str(e), backend="openai", status_code=status)
    return BackendError(str(e), backend="openai", status_code=status)
