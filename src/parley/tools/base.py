"""
tools/base.py — Capability contract

Every capability has a name, a one-line description shown to the model,
and an async execute(params) that returns a value or raises. Failures are
raised, never returned as sentinel values; the engine turns them into
text for the model.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping

from parley.exceptions import ValidationError

Params = Mapping[str, Any]


class Capability(ABC):
    """Abstract base for all capabilities."""

    name: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, params: Params) -> Any:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class FunctionCapability(Capability):
    """Adapts a plain async function taking the params mapping."""

    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable[[Params], Awaitable[Any]],
    ) -> None:
        if not inspect.iscoroutinefunction(fn):
            raise ValidationError(f"Capability '{name}' handler must be an async function")
        self.name = name
        self.description = description
        self._fn = fn

    async def execute(self, params: Params) -> Any:
        return await self._fn(params)
