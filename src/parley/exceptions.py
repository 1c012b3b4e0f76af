"""
exceptions.py — Parley Unified Error Hierarchy

All Parley-specific exceptions live here. Every layer of the stack
raises typed subclasses of ParleyError — never bare Exception.

Import from here, not from individual modules:
    from parley.exceptions import CapabilityNotFoundError, BackendError

Hierarchy:
    ParleyError
    ├── ValidationError
    │   ├── InvalidArgumentError
    │   └── BindingConflictError
    ├── NotFoundError
    │   ├── CapabilityNotFoundError
    │   └── ConversationNotFoundError
    ├── CapabilityAlreadyRegisteredError
    ├── ExecutionError
    ├── BackendError
    │   ├── BackendConnectionError
    │   ├── BackendTimeoutError
    │   ├── BackendLoadingError
    │   └── MalformedResponseError
    ├── PersistenceError
    ├── InitError
    └── ChannelClosedError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class ParleyError(Exception):
    """Base class for all Parley exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Input validation
# ─────────────────────────────────────────────────────────────────────────────

class ValidationError(ParleyError):
    """Caller supplied malformed input."""


class InvalidArgumentError(ValidationError):
    """An argument was empty or otherwise unusable (e.g. a blank conversation id)."""


class BindingConflictError(ValidationError):
    """An external handle is already bound to a different internal session."""

    def __init__(self, handle: str, existing: str, requested: str) -> None:
        self.handle = handle
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"Handle '{handle}' is already bound to '{existing}', cannot rebind to '{requested}'"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Lookup
# ─────────────────────────────────────────────────────────────────────────────

class NotFoundError(ParleyError):
    """Base for lookups that found nothing."""


class CapabilityNotFoundError(NotFoundError):
    """Requested capability is not registered in the CapabilityRegistry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Capability not found: '{name}'")


class ConversationNotFoundError(NotFoundError):
    """Requested conversation does not exist in the memory store."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: '{conversation_id}'")


# ─────────────────────────────────────────────────────────────────────────────
# Capabilities
# ─────────────────────────────────────────────────────────────────────────────

class CapabilityAlreadyRegisteredError(ParleyError):
    """A capability with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Capability already registered: '{name}'")


class ExecutionError(ParleyError):
    """A capability failed while executing."""


# ─────────────────────────────────────────────────────────────────────────────
# Model backend
# ─────────────────────────────────────────────────────────────────────────────

class BackendError(ParleyError):
    """Base for model backend failures."""

    def __init__(
        self,
        message: str,
        backend: str = "unknown",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"[{self.backend}] HTTP {self.status_code}: {base}"
        return f"[{self.backend}] {base}"


class BackendConnectionError(BackendError):
    """Network failure talking to the backend (retryable)."""


class BackendTimeoutError(BackendError):
    """The backend call exceeded its overall deadline."""


class BackendLoadingError(BackendError):
    """The backend kept reporting that the model is still loading."""


class MalformedResponseError(BackendError):
    """The backend answered with a body that could not be decoded."""


# ─────────────────────────────────────────────────────────────────────────────
# Persistence / lifecycle
# ─────────────────────────────────────────────────────────────────────────────

class PersistenceError(ParleyError):
    """A memory store read or write failed."""


class InitError(ParleyError):
    """The engine could not be initialised (e.g. first conversation creation failed)."""


class ChannelClosedError(ParleyError):
    """An event was sent on a channel that has already been closed."""


__all__ = [
    "ParleyError",
    "ValidationError",
    "InvalidArgumentError",
    "BindingConflictError",
    "NotFoundError",
    "CapabilityNotFoundError",
    "ConversationNotFoundError",
    "CapabilityAlreadyRegisteredError",
    "ExecutionError",
    "BackendError",
    "BackendConnectionError",
    "BackendTimeoutError",
    "BackendLoadingError",
    "MalformedResponseError",
    "PersistenceError",
    "InitError",
    "ChannelClosedError",
]
