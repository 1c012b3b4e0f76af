"""
tools/calculator.py — Basic arithmetic capability

params: operation (add | subtract | multiply | divide), a, b.
Numbers may arrive as strings when the model used `key=value` parameters.
"""

from __future__ import annotations

import operator
from typing import Any

from parley.exceptions import ExecutionError, ValidationError
from parley.tools.base import Capability, Params

_OPERATIONS = {
    "add": operator.add,
    "subtract": operator.sub,
    "multiply": operator.mul,
    "divide": operator.truediv,
}


def _number(params: Params, key: str) -> float:
    if key not in params or params[key] is None:
        raise ValidationError(f"'{key}' parameter is required")
    value = params[key]
    if isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{key}' must be a number, got {value!r}") from None


class CalculatorCapability(Capability):
    name = "calculator"
    description = (
        "Basic arithmetic. params: operation (add|subtract|multiply|divide), a, b"
    )

    async def execute(self, params: Params) -> Any:
        operation = str(params.get("operation", "")).strip().lower()
        if operation not in _OPERATIONS:
            raise ValidationError(
                f"unsupported operation: '{operation}'. Use one of {sorted(_OPERATIONS)}"
            )
        a = _number(params, "a")
        b = _number(params, "b")
        if operation == "divide" and b == 0:
            raise ExecutionError("division by zero")
        result = _OPERATIONS[operation](a, b)
        return int(result) if result.is_integer() else result
