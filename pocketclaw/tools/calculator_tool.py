"""Safe arithmetic expression evaluation."""

from __future__ import annotations

import ast
import asyncio
import math
import operator
from typing import Any

from pocketclaw.tools.base import Tool, ToolName

_MAX_EXPRESSION_LENGTH = 512
_MAX_DEPTH = 40
_MAX_EXPONENT = 64
_MAX_INT_BITS = 4096
_MAX_ROUND_DIGITS = 100
_EVALUATION_TIMEOUT_SECONDS = 5.0

_BINARY_OPS: dict[type[ast.AST], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: dict[type[ast.AST], Any] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_CONSTANTS = {"pi": math.pi, "e": math.e, "tau": math.tau, "inf": math.inf}
_FLOAT_FUNCTIONS = (
    "sqrt", "exp", "log", "log2", "log10", "sin", "cos", "tan", "asin", "acos", "atan", "atan2",
    "sinh", "cosh", "tanh", "hypot", "degrees", "radians", "fabs", "floor", "ceil", "trunc",
)


def _round(value: int | float, ndigits: int | None = None) -> int | float:
    if ndigits is None:
        return round(value)
    if not isinstance(ndigits, int) or abs(ndigits) > _MAX_ROUND_DIGITS:
        raise ValueError(f"round() digits must be an integer within ±{_MAX_ROUND_DIGITS}")
    return round(value, ndigits)


# Integer-only functions such as factorial and comb are left out: their cost
# grows without bound in the size of the argument.
_FUNCTIONS: dict[str, Any] = {name: getattr(math, name) for name in _FLOAT_FUNCTIONS}
_FUNCTIONS.update({"abs": abs, "round": _round, "min": min, "max": max})


def evaluate(expression: str) -> int | float:
    """Evaluate a numeric expression without executing arbitrary code."""

    expression = expression.strip()
    if not expression:
        raise ValueError("expression cannot be empty")
    if len(expression) > _MAX_EXPRESSION_LENGTH:
        raise ValueError("expression is too long")
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"invalid syntax: {exc.msg}") from exc
    return _eval_node(tree.body, 0)


def _eval_node(node: ast.AST, depth: int) -> int | float:
    if depth > _MAX_DEPTH:
        raise ValueError("expression is too complex")

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ValueError("only numeric literals are allowed")
        return node.value

    if isinstance(node, ast.BinOp):
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise ValueError("operator is not allowed")
        left = _eval_node(node.left, depth + 1)
        right = _eval_node(node.right, depth + 1)
        if isinstance(node.op, ast.Pow):
            if abs(right) > _MAX_EXPONENT:
                raise ValueError(f"exponent is too large (max {_MAX_EXPONENT})")
            if isinstance(left, int) and isinstance(right, int) and left.bit_length() * right > _MAX_INT_BITS:
                raise ValueError("result is too large")
        return _bounded(op(left, right))

    if isinstance(node, ast.UnaryOp):
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ValueError("unary operator is not allowed")
        return _bounded(op(_eval_node(node.operand, depth + 1)))

    if isinstance(node, ast.Name):
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise ValueError(f"identifier '{node.id}' is not allowed")

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise ValueError("function is not allowed")
        if node.keywords:
            raise ValueError("keyword arguments are not allowed")
        args = [_eval_node(arg, depth + 1) for arg in node.args]
        return _bounded(_FUNCTIONS[node.func.id](*args))

    raise ValueError(f"unsupported expression element: {type(node).__name__}")


def _bounded(value: int | float) -> int | float:
    if isinstance(value, int) and value.bit_length() > _MAX_INT_BITS:
        raise ValueError("result is too large")
    return value


class CalculatorTool(Tool):
    """Evaluate arithmetic for the agent."""

    name = ToolName.CALCULATE
    description = (
        "Evaluate a numeric expression. Supports + - * / // % **, parentheses, "
        "math functions (sqrt, log, sin, ...), abs, round, min, max and the "
        "constants pi, e, tau."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "expression": {"type": "string", "description": "Expression to evaluate, e.g. 'sqrt(2) * 10'."},
        },
        "required": ["expression"],
        "additionalProperties": False,
    }

    async def run(self, group_id: str, **kwargs: Any) -> str:
        # Evaluated in a worker thread so a slow expression cannot stall the event loop.
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(evaluate, str(kwargs["expression"])),
                timeout=_EVALUATION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            raise ValueError(f"evaluation timed out after {_EVALUATION_TIMEOUT_SECONDS:g}s") from exc
        return str(result)
