"""
Control-flow and boolean kinds.
"""

import operator

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.types import Shape, ValueType, coerce_value

_COMPARISONS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _truthy(value) -> bool:
    return bool(coerce_value(value, ValueType.BOOLEAN))


@node_kind(
    "logic.if",
    display_name="If / Else",
    category="Logic",
    inputs={"condition": {"value_type": "boolean", "default_literal": True}},
    outputs={"then": {"value_type": "exec"}, "else": {"value_type": "exec"}},
)
async def if_else(ctx: BehaviorContext) -> str:
    return "then" if _truthy(await ctx.pull("condition")) else "else"


@node_kind(
    "logic.while",
    display_name="While Loop",
    category="Logic",
    inputs={"condition": {"value_type": "boolean", "default_literal": True}},
    outputs={"loop": {"value_type": "exec"}, "exit": {"value_type": "exec"}},
)
async def while_loop(ctx: BehaviorContext) -> None:
    """Run ``loop`` while the condition holds, then ``exit``."""
    while await ctx.checkpoint():
        if not _truthy(await ctx.pull("condition")):
            break
        await ctx.advance("loop")
    await ctx.advance("exit")


@node_kind(
    "logic.for",
    display_name="For Loop",
    category="Logic",
    inputs={
        "from": {"value_type": "number", "default_literal": 0},
        "to": {"value_type": "number", "default_literal": 10},
    },
    outputs={
        "loop": {"value_type": "exec"},
        "done": {"value_type": "exec"},
        "index": {"value_type": "number"},
    },
)
async def for_loop(ctx: BehaviorContext) -> None:
    """
    Run ``loop`` once per index in [from, to), publishing ``index`` before
    each pass, then ``done`` once. A stop request ends the loop early.
    """
    start = int(await ctx.pull("from"))
    end = int(await ctx.pull("to"))
    for index in range(start, end):
        if not await ctx.checkpoint():
            break
        ctx.memoize("index", index)
        await ctx.advance("loop")
    await ctx.advance("done")


@node_kind(
    "logic.wait",
    display_name="Wait (ms)",
    category="Logic",
    inputs={"ms": {"value_type": "number", "default_literal": 1000}},
)
async def wait(ctx: BehaviorContext) -> None:
    """Suspend this trigger, then continue unless execution was stopped."""
    ms = await ctx.pull("ms")
    if not await ctx.sleep(float(ms) / 1000.0):
        ctx.halt()


@node_kind(
    "logic.and",
    display_name="And",
    category="Logic",
    shape=Shape.EXPRESSION,
    inputs={
        "a": {"value_type": "boolean", "default_literal": True},
        "b": {"value_type": "boolean", "default_literal": True},
    },
    outputs={"value": {"value_type": "boolean"}},
)
async def logical_and(ctx: BehaviorContext) -> dict:
    return {"value": _truthy(await ctx.pull("a")) and _truthy(await ctx.pull("b"))}


@node_kind(
    "logic.or",
    display_name="Or",
    category="Logic",
    shape=Shape.EXPRESSION,
    inputs={
        "a": {"value_type": "boolean", "default_literal": False},
        "b": {"value_type": "boolean", "default_literal": False},
    },
    outputs={"value": {"value_type": "boolean"}},
)
async def logical_or(ctx: BehaviorContext) -> dict:
    return {"value": _truthy(await ctx.pull("a")) or _truthy(await ctx.pull("b"))}


@node_kind(
    "logic.not",
    display_name="Not",
    category="Logic",
    shape=Shape.EXPRESSION,
    inputs={"val": {"value_type": "boolean", "default_literal": True}},
    outputs={"value": {"value_type": "boolean"}},
)
async def logical_not(ctx: BehaviorContext) -> dict:
    return {"value": not _truthy(await ctx.pull("val"))}


@node_kind(
    "logic.compare",
    display_name="Compare",
    category="Logic",
    shape=Shape.EXPRESSION,
    inputs={
        "a": {"value_type": "any", "default_literal": 0},
        "op": {"value_type": "string", "default_literal": "=="},
        "b": {"value_type": "any", "default_literal": 0},
    },
    outputs={"value": {"value_type": "boolean"}},
)
async def compare(ctx: BehaviorContext) -> dict:
    op = await ctx.pull("op")
    if op not in _COMPARISONS:
        raise ValueError(f"Unknown comparison operator {op!r}")
    return {"value": _COMPARISONS[op](await ctx.pull("a"), await ctx.pull("b"))}


KINDS = [if_else, while_loop, for_loop, wait, logical_and, logical_or, logical_not, compare]
