"""
String kinds.
"""

from string import Template

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.types import Shape, ValueType, coerce_value


def _text(value) -> str:
    return coerce_value(value, ValueType.STRING)


@node_kind(
    "str.concat",
    display_name="Concatenate",
    category="Strings",
    shape=Shape.EXPRESSION,
    inputs={
        "a": {"value_type": "string", "default_literal": "Hello"},
        "b": {"value_type": "string", "default_literal": "World"},
    },
    outputs={"value": {"value_type": "string"}},
)
async def concat(ctx: BehaviorContext) -> dict:
    return {"value": _text(await ctx.pull("a")) + _text(await ctx.pull("b"))}


@node_kind(
    "str.len",
    display_name="Length",
    category="Strings",
    shape=Shape.EXPRESSION,
    inputs={"text": {"value_type": "string", "default_literal": ""}},
    outputs={"value": {"value_type": "number"}},
)
async def length(ctx: BehaviorContext) -> dict:
    return {"value": len(_text(await ctx.pull("text")))}


@node_kind(
    "str.upper",
    display_name="Uppercase",
    category="Strings",
    shape=Shape.EXPRESSION,
    inputs={"text": {"value_type": "string", "default_literal": "hi"}},
    outputs={"value": {"value_type": "string"}},
)
async def upper(ctx: BehaviorContext) -> dict:
    return {"value": _text(await ctx.pull("text")).upper()}


@node_kind(
    "str.template",
    display_name="Template",
    category="Strings",
    shape=Shape.EXPRESSION,
    inputs={
        "tpl": {"value_type": "string", "default_literal": "Hello ${name}"},
        "values": {"value_type": "object", "default_literal": {}},
    },
    outputs={"value": {"value_type": "string"}},
)
async def template(ctx: BehaviorContext) -> dict:
    """
    Fill ``${name}`` placeholders from the global variables, overridden by
    the ``values`` object. Unknown placeholders are left as they are.
    """
    names = {key: _text(value) for key, value in ctx.read_variables().items()}
    values = await ctx.pull("values")
    if isinstance(values, dict):
        names.update({str(key): _text(value) for key, value in values.items()})
    return {"value": Template(_text(await ctx.pull("tpl"))).safe_substitute(names)}


KINDS = [concat, length, upper, template]
