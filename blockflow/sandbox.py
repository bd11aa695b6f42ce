"""
Capability-restricted evaluation of user-supplied expressions.

Plugin and script nodes may carry code typed by a user. That code is parsed
as a single Python expression and checked against a whitelist of syntax
before it is evaluated by walking the tree; it is never handed to ``eval``.
Names resolve only from the mapping passed to ``evaluate`` and from a fixed
table of pure functions, so an expression has no route to attributes,
imports, builtins, the engine or the host.
"""

import ast
import math
import operator
from typing import Any, Callable

from blockflow.errors import SandboxError

MAX_SOURCE_LENGTH = 2000
MAX_SEQUENCE_LENGTH = 10_000
MAX_POWER_EXPONENT = 1000

_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

SAFE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "sum": sum,
    "sorted": sorted,
    "upper": lambda s: str(s).upper(),
    "lower": lambda s: str(s).lower(),
    "sqrt": math.sqrt,
    "floor": math.floor,
    "ceil": math.ceil,
    "sin": math.sin,
    "cos": math.cos,
}

SAFE_CONSTANTS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "pi": math.pi,
}


class SafeExpression:
    """
    A parsed, whitelisted expression.

    Example:
        >>> SafeExpression("max(a, b) * 2").evaluate({"a": 3, "b": 5})
        10
    """

    def __init__(self, source: str) -> None:
        """
        Parse and check an expression.

        Raises:
            SandboxError: If the source is too long, not a single expression,
                or uses syntax outside the whitelist
        """
        if not isinstance(source, str):
            raise SandboxError(f"Expression must be text, got {type(source).__name__}")
        if len(source) > MAX_SOURCE_LENGTH:
            raise SandboxError(f"Expression longer than {MAX_SOURCE_LENGTH} characters")
        self.source = source
        try:
            self._tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as e:
            raise SandboxError(f"Invalid expression {source!r}: {e.msg}") from e
        self._check(self._tree.body)

    def __repr__(self) -> str:
        return f"SafeExpression({self.source!r})"

    @property
    def names(self) -> set[str]:
        """Free names referenced by the expression, excluding functions and constants."""
        found = set()
        for node in ast.walk(self._tree):
            if isinstance(node, ast.Name) and node.id not in SAFE_FUNCTIONS \
                    and node.id not in SAFE_CONSTANTS:
                found.add(node.id)
        return found

    def _check(self, node: ast.AST) -> None:
        if isinstance(node, ast.Constant):
            if not isinstance(node.value, (int, float, str, bool, type(None))):
                raise SandboxError(f"Constant {node.value!r} not allowed")
            return
        if isinstance(node, ast.Name):
            if node.id.startswith("_"):
                raise SandboxError(f"Name '{node.id}' not allowed")
            return
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY_OPS:
                raise SandboxError(f"Operator {type(node.op).__name__} not allowed")
            self._check(node.left)
            self._check(node.right)
            return
        if isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY_OPS:
                raise SandboxError(f"Operator {type(node.op).__name__} not allowed")
            self._check(node.operand)
            return
        if isinstance(node, ast.BoolOp):
            for value in node.values:
                self._check(value)
            return
        if isinstance(node, ast.Compare):
            for op in node.ops:
                if type(op) not in _COMPARE_OPS:
                    raise SandboxError(f"Comparison {type(op).__name__} not allowed")
            self._check(node.left)
            for comparator in node.comparators:
                self._check(comparator)
            return
        if isinstance(node, ast.IfExp):
            self._check(node.test)
            self._check(node.body)
            self._check(node.orelse)
            return
        if isinstance(node, ast.Subscript):
            self._check(node.value)
            self._check(node.slice)
            return
        if isinstance(node, ast.Slice):
            for part in (node.lower, node.upper, node.step):
                if part is not None:
                    self._check(part)
            return
        if isinstance(node, (ast.List, ast.Tuple)):
            for elt in node.elts:
                self._check(elt)
            return
        if isinstance(node, ast.Dict):
            for key in node.keys:
                if key is None:
                    raise SandboxError("Dict unpacking not allowed")
                self._check(key)
            for value in node.values:
                self._check(value)
            return
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in SAFE_FUNCTIONS:
                raise SandboxError(f"Call to {ast.unparse(node.func)!r} not allowed")
            if node.keywords:
                raise SandboxError("Keyword arguments not allowed")
            for arg in node.args:
                if isinstance(arg, ast.Starred):
                    raise SandboxError("Argument unpacking not allowed")
                self._check(arg)
            return
        raise SandboxError(f"{type(node).__name__} not allowed in expressions")

    def evaluate(self, names: dict[str, Any]) -> Any:
        """
        Evaluate against the given names.

        Raises:
            SandboxError: If a name is undefined or evaluation fails
        """
        try:
            return self._eval(self._tree.body, names)
        except SandboxError:
            raise
        except (ArithmeticError, TypeError, ValueError, LookupError) as e:
            raise SandboxError(f"Error evaluating {self.source!r}: {e}") from e

    def _eval(self, node: ast.AST, names: dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in names:
                return names[node.id]
            if node.id in SAFE_CONSTANTS:
                return SAFE_CONSTANTS[node.id]
            raise SandboxError(f"Name '{node.id}' is not defined")
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, names)
            right = self._eval(node.right, names)
            if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) \
                    and abs(right) > MAX_POWER_EXPONENT:
                raise SandboxError(f"Exponent {right} too large")
            if isinstance(node.op, ast.Mult) and _repeats_too_much(left, right):
                raise SandboxError("Result too large")
            result = _BINARY_OPS[type(node.op)](left, right)
            if isinstance(result, (str, list, tuple)) and len(result) > MAX_SEQUENCE_LENGTH:
                raise SandboxError("Result too large")
            return result
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, names))
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result = True
                for value in node.values:
                    result = self._eval(value, names)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, names)
                if result:
                    return result
            return result
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, names)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, names)
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            if self._eval(node.test, names):
                return self._eval(node.body, names)
            return self._eval(node.orelse, names)
        if isinstance(node, ast.Subscript):
            return self._eval(node.value, names)[self._eval(node.slice, names)]
        if isinstance(node, ast.Slice):
            return slice(
                None if node.lower is None else self._eval(node.lower, names),
                None if node.upper is None else self._eval(node.upper, names),
                None if node.step is None else self._eval(node.step, names),
            )
        if isinstance(node, ast.List):
            return [self._eval(elt, names) for elt in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self._eval(elt, names) for elt in node.elts)
        if isinstance(node, ast.Dict):
            return {
                self._eval(k, names): self._eval(v, names)
                for k, v in zip(node.keys, node.values)
            }
        if isinstance(node, ast.Call):
            func = SAFE_FUNCTIONS[node.func.id]  # type: ignore[attr-defined]
            return func(*(self._eval(arg, names) for arg in node.args))
        raise SandboxError(f"{type(node).__name__} not allowed in expressions")


def _repeats_too_much(left: Any, right: Any) -> bool:
    for seq, count in ((left, right), (right, left)):
        if isinstance(seq, (str, list, tuple)) and isinstance(count, int):
            return len(seq) * count > MAX_SEQUENCE_LENGTH
    return False
