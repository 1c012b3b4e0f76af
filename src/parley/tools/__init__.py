"""
tools/__init__.py — Parley Capabilities
"""

from __future__ import annotations

from parley.tools.base import Capability, FunctionCapability, Params
from parley.tools.calculator import CalculatorCapability
from parley.tools.registry import CapabilityRegistry

__all__ = [
    "Capability",
    "FunctionCapability",
    "Params",
    "CalculatorCapability",
    "CapabilityRegistry",
    "default_registry",
]


def default_registry() -> CapabilityRegistry:
    """Registry pre-loaded with the built-in capabilities."""
    registry = CapabilityRegistry()
    calculator = CalculatorCapability()
    registry.register(calculator.name, calculator)
    return registry
