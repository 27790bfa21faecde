"""Calculator tool — the four basic arithmetic operations."""

from __future__ import annotations

from typing import Literal

from langchain_core.tools import tool

_SYMBOLS = {"add": "+", "subtract": "-", "multiply": "*", "divide": "/"}


def _fmt(number: float) -> str:
    """Render ``100.0`` as ``100`` and leave real fractions alone."""
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


@tool
def calculator(
    operation: Literal["add", "subtract", "multiply", "divide"],
    a: float,
    b: float,
) -> str:
    """Performs basic arithmetic operations (add, subtract, multiply, divide).

    Args:
        operation: The arithmetic operation to perform.
        a: The first number.
        b: The second number.
    """
    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "multiply":
        result = a * b
    elif operation == "divide":
        if b == 0:
            return "Error: Cannot divide by zero"
        result = a / b
    else:
        return "Error: Unknown operation"

    return f"{_fmt(a)} {_SYMBOLS[operation]} {_fmt(b)} = {_fmt(result)}"
