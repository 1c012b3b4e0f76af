"""
tools/registry.py — Capability Registry

Central name → capability table. Capabilities are registered either
programmatically with register() or with the @registry.capability()
decorator on a plain async function.

Usage:
    registry = CapabilityRegistry()

    @registry.capability("echo", "Repeat the 'text' parameter")
    async def echo(params):
        return params.get("text", "")

    result = await registry.invoke("echo", {"text": "hi"})

The table is guarded by a threading.Lock so registration from worker
threads and concurrent lookups are safe. Capabilities themselves run
outside the lock; concurrent invocations of one capability are its own
concern.
"""

from __future__ import annotations

import threading
from typing import Any, Awaitable, Callable, Optional

from parley.exceptions import (
    CapabilityAlreadyRegisteredError,
    CapabilityNotFoundError,
    InvalidArgumentError,
)
from parley.observability.logger import get_logger
from parley.tools.base import Capability, FunctionCapability, Params

log = get_logger(__name__)


class CapabilityRegistry:

    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._lock = threading.Lock()

    def register(self, name: str, capability: Capability) -> None:
        """
        Register `capability` under `name`.

        Raises CapabilityAlreadyRegisteredError if the name is taken. Visible to
        lookups as soon as this returns.
        """
        if not name or not name.strip():
            raise InvalidArgumentError("Capability name must not be empty")
        with self._lock:
            if name in self._capabilities:
                raise CapabilityAlreadyRegisteredError(name)
            self._capabilities[name] = capability
        log.debug("registry.registered", capability=name)

    def capability(
        self, name: str, description: str = ""
    ) -> Callable[[Callable[[Params], Awaitable[Any]]], Callable[[Params], Awaitable[Any]]]:
        """Decorator form of register() for async functions taking the params mapping."""
        def decorator(fn: Callable[[Params], Awaitable[Any]]) -> Callable[[Params], Awaitable[Any]]:
            self.register(name, FunctionCapability(name, description or (fn.__doc__ or "").strip(), fn))
            return fn

        return decorator

    def get(self, name: str) -> Optional[Capability]:
        with self._lock:
            return self._capabilities.get(name)

    def list_names(self) -> list[str]:
        with self._lock:
            return sorted(self._capabilities)

    def describe(self) -> dict[str, str]:
        """name → description, for the system prompt's capability catalogue."""
        with self._lock:
            return {n: c.description for n, c in sorted(self._capabilities.items())}

    async def invoke(self, name: str, params: Params) -> Any:
        """
        Run the named capability. Raises CapabilityNotFoundError if unregistered;
        otherwise the capability's own result or exception passes through.
        """
        capability = self.get(name)
        if capability is None:
            log.warning("registry.not_found", capability=name)
            raise CapabilityNotFoundError(name)
        log.info("registry.invoke", capability=name, param_keys=sorted(params))
        return await capability.execute(params)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._capabilities

    def __len__(self) -> int:
        with self._lock:
            return len(self._capabilities)
