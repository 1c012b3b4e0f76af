"""
brain/base.py — Abstract model backend + connection retry

All backends (Ollama, OpenAI-compatible) subclass ModelBackend and
implement generate() and generate_stream().

call_with_backoff() retries BackendConnectionError with exponential
backoff. It is the only retry policy here; backend-specific conditions
(e.g. Ollama's "model still loading") keep their own loop and counter.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from parley.brain.types import Prompt
from parley.config.settings import RetryConfig
from parley.exceptions import BackendConnectionError
from parley.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class ModelBackend(ABC):
    """
    Abstract base for all model backends.

    Subclasses must implement:
      - generate()        -> one complete reply for the prompt
      - generate_stream() -> async generator of text deltas; exhausting it is
                             the end of the reply, aclose() abandons the call
    """

    name: str = "base"

    @abstractmethod
    async def generate(self, prompt: Prompt) -> str:
        ...

    @abstractmethod
    def generate_stream(self, prompt: Prompt) -> AsyncGenerator[str, None]:
        ...

    async def health_check(self) -> bool:
        """Return True if the backend is reachable."""
        return True

    async def aclose(self) -> None:
        """Release network resources."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


def backoff_delay(attempt: int, retry: RetryConfig) -> float:
    """min(base_delay * 2^attempt + jitter, max_delay)"""
    jitter = random.uniform(0, 0.5) if retry.base_delay > 0 else 0.0
    return min(retry.base_delay * (2 ** attempt) + jitter, retry.max_delay)


async def call_with_backoff(
    fn: Callable[[], Awaitable[T]],
    retry: RetryConfig,
    backend: str = "unknown",
) -> T:
    """
    Await fn() with exponential backoff on BackendConnectionError.

    Every other BackendError (timeouts, malformed bodies, 4xx) is permanent
    and propagates immediately.
    """
    last_error: BackendConnectionError | None = None

    for attempt in range(retry.max_attempts):
        try:
            return await fn()
        except BackendConnectionError as e:
            last_error = e
            if attempt == retry.max_attempts - 1:
                break
            delay = backoff_delay(attempt, retry)
            log.warning(
                "backend.retrying",
                backend=backend,
                attempt=attempt + 1,
                max_attempts=retry.max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
            )
            await asyncio.sleep(delay)

    assert last_error is not None
    raise last_error
