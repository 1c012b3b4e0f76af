"""
brain/ollama_backend.py — Ollama local model backend

Talks to Ollama's native /api/chat endpoint over httpx (single reply or
NDJSON stream). No API key required.

Two independent retry loops:
  - connection failures (refused, reset, 5xx) → exponential backoff,
    via call_with_backoff()
  - `done_reason == "load"` (model still loading into memory) → fixed
    delay, bounded by load_retry.max_retries
A connection retry never spends the loading budget and vice versa.
Everything is bounded by one overall deadline (timeout_seconds).
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Optional

import httpx

from parley.brain.base import ModelBackend, backoff_delay, call_with_backoff
from parley.brain.types import Prompt
from parley.config.settings import LoadRetryConfig, RetryConfig
from parley.exceptions import (
    BackendConnectionError,
    BackendError,
    BackendLoadingError,
    BackendTimeoutError,
    MalformedResponseError,
)
from parley.observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434"


class _ModelLoading(Exception):
    """Internal signal: the reply carried done_reason == 'load'."""


class OllamaBackend(ModelBackend):

    name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = _DEFAULT_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 180.0,
        retry: Optional[RetryConfig] = None,
        load_retry: Optional[LoadRetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.retry = retry or RetryConfig()
        self.load_retry = load_retry or LoadRetryConfig()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def generate(self, prompt: Prompt) -> str:
        log.debug("ollama.generate.start", model=self.model, messages=len(prompt.messages))
        try:
            text = await asyncio.wait_for(
                self._generate_with_load_retry(prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"No reply within {self.timeout_seconds}s", backend=self.name
            ) from e
        log.debug("ollama.generate.complete", model=self.model, chars=len(text))
        return text

    async def generate_stream(self, prompt: Prompt) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        loads = 0
        connect_failures = 0

        while True:
            emitted = False
            try:
                async for delta in self._stream_once(prompt, deadline):
                    emitted = True
                    yield delta
                return
            except _ModelLoading:
                loads += 1
                # A load reply proves the connection works
                connect_failures = 0
                self._check_load_budget(loads)
                await asyncio.sleep(self.load_retry.delay)
            except BackendConnectionError as e:
                # Deltas already delivered cannot be replayed
                if emitted:
                    raise
                connect_failures += 1
                if connect_failures >= self.retry.max_attempts:
                    raise
                delay = backoff_delay(connect_failures - 1, self.retry)
                log.warning(
                    "backend.retrying",
                    backend=self.name,
                    attempt=connect_failures,
                    max_attempts=self.retry.max_attempts,
                    delay_s=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            log.warning("ollama.health_check.failed", error=str(e))
            return False

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Private helpers ───────────────────────────────────────────────────────

    def _payload(self, prompt: Prompt, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": prompt.to_chat(),
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

    def _check_load_budget(self, loads: int) -> None:
        if loads > self.load_retry.max_retries:
            raise BackendLoadingError(
                f"Model '{self.model}' still loading after {self.load_retry.max_retries} retries",
                backend=self.name,
            )
        log.warning(
            "ollama.loading_retry",
            model=self.model,
            retry=loads,
            max_retries=self.load_retry.max_retries,
            delay_s=self.load_retry.delay,
        )

    async def _generate_with_load_retry(self, prompt: Prompt) -> str:
        loads = 0
        while True:
            data = await call_with_backoff(
                lambda: self._post_chat(prompt), self.retry, backend=self.name
            )
            if data.get("done_reason") == "load" and not _text_of(data):
                loads += 1
                self._check_load_budget(loads)
                await asyncio.sleep(self.load_retry.delay)
                continue
            return _text_of(data)

    async def _post_chat(self, prompt: Prompt) -> dict[str, Any]:
        try:
            response = await self._client.post("/api/chat", json=self._payload(prompt, stream=False))
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(str(e) or "request timed out", backend=self.name) from e
        except httpx.TransportError as e:
            raise BackendConnectionError(
                f"Cannot reach Ollama at {self.base_url}. Is `ollama serve` running? ({e})",
                backend=self.name,
            ) from e
        _raise_for_status(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Non-JSON reply: {response.text[:200]}", backend=self.name) from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Reply is not a JSON object", backend=self.name)
        if "error" in data:
            raise BackendError(str(data["error"]), backend=self.name)
        return data

    async def _stream_once(self, prompt: Prompt, deadline: float) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        try:
            async with self._client.stream(
                "POST", "/api/chat", json=self._payload(prompt, stream=True)
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    _raise_for_status(response.status_code, body)

                async for line in response.aiter_lines():
                    if loop.time() > deadline:
                        raise BackendTimeoutError(
                            f"Stream exceeded {self.timeout_seconds}s", backend=self.name
                        )
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise MalformedResponseError(
                            f"Bad stream line: {line[:200]}", backend=self.name
                        ) from e
                    if "error" in data:
                        raise BackendError(str(data["error"]), backend=self.name)

                    text = _text_of(data)
                    if data.get("done") and data.get("done_reason") == "load" and not text:
                        raise _ModelLoading()
                    if text:
                        yield text
                    if data.get("done"):
                        return
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(str(e) or "stream timed out", backend=self.name) from e
        except httpx.TransportError as e:
            raise BackendConnectionError(str(e), backend=self.name) from e


def _text_of(data: dict[str, Any]) -> str:
    message = data.get("message")
    if isinstance(message, dict):
        return str(message.get("content") or "")
    return str(data.get("response") or "")


def _raise_for_status(status_code: int, body: str) -> None:
    if status_code < 400:
        return
    if status_code >= 500:
        raise BackendConnectionError(body[:200] or "server error", backend="ollama", status_code=status_code)
    raise BackendError(body[:200] or "request rejected", backend="ollama", status_code=status_code)
