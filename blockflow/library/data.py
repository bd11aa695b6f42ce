"""
Variable, JSON and array kinds.
"""

import json

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.types import Shape, ValueType, coerce_value


@node_kind(
    "var.set",
    display_name="Set Variable",
    category="Data",
    inputs={
        "name": {"value_type": "string", "default_literal": "myVar"},
        "value": {"value_type": "any", "default_literal": 0},
    },
)
async def set_variable(ctx: BehaviorContext) -> None:
    """Write a value into the global variable store."""
    name = coerce_value(await ctx.pull("name"), ValueType.STRING)
    ctx.variables.set(name, await ctx.pull("value"))


@node_kind(
    "var.get",
    display_name="Get Variable",
    category="Data",
    shape=Shape.EXPRESSION,
    inputs={"name": {"value_type": "string", "default_literal": "myVar"}},
    outputs={"value": {"value_type": "any"}},
)
async def get_variable(ctx: BehaviorContext) -> dict:
    """Read a global variable; None when it was never set."""
    name = coerce_value(await ctx.pull("name"), ValueType.STRING)
    return {"value": ctx.read_variable(name)}


@node_kind(
    "data.json_parse",
    display_name="JSON Parse",
    category="Data",
    shape=Shape.EXPRESSION,
    inputs={"json": {"value_type": "string", "default_literal": "{}"}},
    outputs={"value": {"value_type": "any"}},
)
async def json_parse(ctx: BehaviorContext) -> dict:
    text = await ctx.pull("json")
    if not isinstance(text, str):
        # Already structured, e.g. wired from another node
        return {"value": text}
    return {"value": json.loads(text)}


def _as_list(value, port_id: str) -> list:
    value = coerce_value(value, ValueType.ARRAY)
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"Input '{port_id}' is not an array: {value!r}")
    return list(value)


@node_kind(
    "array.pop",
    display_name="Array Pop",
    category="Data",
    shape=Shape.EXPRESSION,
    inputs={"array": {"value_type": "array", "default_literal": []}},
    outputs={
        "value": {"value_type": "any"},
        "rest": {"value_type": "array"},
    },
)
async def array_pop(ctx: BehaviorContext) -> dict:
    """
    Split off the last element. Both outputs are produced by one invocation,
    so pulling ``value`` and ``rest`` in the same trigger sees one pop.
    The input array is not modified.
    """
    items = _as_list(await ctx.pull("array"), "array")
    if not items:
        return {"value": None, "rest": []}
    return {"value": items[-1], "rest": items[:-1]}


@node_kind(
    "array.push",
    display_name="Array Push",
    category="Data",
    shape=Shape.EXPRESSION,
    inputs={
        "array": {"value_type": "array", "default_literal": []},
        "item": {"value_type": "any", "default_literal": None},
    },
    outputs={"value": {"value_type": "array"}},
)
async def array_push(ctx: BehaviorContext) -> dict:
    items = _as_list(await ctx.pull("array"), "array")
    items.append(await ctx.pull("item"))
    return {"value": items}


KINDS = [set_variable, get_variable, json_parse, array_pop, array_push]
