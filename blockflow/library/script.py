"""
User-supplied expressions, evaluated in the sandbox.
"""

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.sandbox import SafeExpression
from blockflow.types import Shape


def _forget_expression(node) -> None:
    node.extension_state.pop("expression", None)


@node_kind(
    "script.eval",
    display_name="Script",
    category="Script",
    shape=Shape.EXPRESSION,
    inputs={
        "code": {"value_type": "string", "default_literal": "x"},
        "x": {"value_type": "any", "default_literal": 0},
    },
    outputs={"value": {"value_type": "any"}},
    teardown=_forget_expression,
)
async def evaluate(ctx: BehaviorContext) -> dict:
    """
    Evaluate ``code`` with ``x`` and the global variables in scope.

    The parsed expression is kept in the node's state and reused while the
    code is unchanged.
    """
    code = await ctx.pull("code")
    expression = ctx.state.get("expression")
    if expression is None or expression.source != code:
        expression = SafeExpression(code)
        ctx.state["expression"] = expression
    names = ctx.read_variables() if expression.names - {"x"} else {}
    names["x"] = await ctx.pull("x")
    return {"value": expression.evaluate(names)}


KINDS = [evaluate]
