"""
Math kinds. All are data-only and read numbers from their inputs.
"""

import math
import random

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.types import Shape, ValueType, coerce_value


def _number_ports(**defaults) -> dict:
    return {
        name: {"value_type": "number", "default_literal": default}
        for name, default in defaults.items()
    }


_VALUE = {"value": {"value_type": "number"}}


async def _numbers(ctx: BehaviorContext, *port_ids: str) -> list:
    values = []
    for port_id in port_ids:
        value = coerce_value(await ctx.pull(port_id), ValueType.NUMBER)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"Input '{port_id}' is not a number: {value!r}")
        values.append(value)
    return values


@node_kind("math.add", display_name="Add", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(a=0, b=0), outputs=_VALUE)
async def add(ctx: BehaviorContext) -> dict:
    a, b = await _numbers(ctx, "a", "b")
    return {"value": a + b}


@node_kind("math.sub", display_name="Subtract", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(a=0, b=0), outputs=_VALUE)
async def subtract(ctx: BehaviorContext) -> dict:
    a, b = await _numbers(ctx, "a", "b")
    return {"value": a - b}


@node_kind("math.mul", display_name="Multiply", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(a=1, b=1), outputs=_VALUE)
async def multiply(ctx: BehaviorContext) -> dict:
    a, b = await _numbers(ctx, "a", "b")
    return {"value": a * b}


@node_kind("math.div", display_name="Divide", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(a=1, b=1), outputs=_VALUE)
async def divide(ctx: BehaviorContext) -> dict:
    """Divide a by b; dividing by zero fails the node."""
    a, b = await _numbers(ctx, "a", "b")
    return {"value": a / b}


@node_kind("math.random", display_name="Random Float", category="Math",
           shape=Shape.EXPRESSION,
           inputs=_number_ports(min=0, max=1), outputs=_VALUE)
async def random_float(ctx: BehaviorContext) -> dict:
    """Uniform float in [min, max), drawn once per trigger."""
    low, high = await _numbers(ctx, "min", "max")
    return {"value": random.uniform(low, high)}


@node_kind("math.clamp", display_name="Clamp", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(val=0, min=0, max=100), outputs=_VALUE)
async def clamp(ctx: BehaviorContext) -> dict:
    value, low, high = await _numbers(ctx, "val", "min", "max")
    return {"value": min(max(value, low), high)}


@node_kind("math.sin", display_name="Sine", category="Math", shape=Shape.EXPRESSION,
           inputs=_number_ports(deg=0), outputs=_VALUE)
async def sine(ctx: BehaviorContext) -> dict:
    """Sine of an angle given in degrees."""
    (degrees,) = await _numbers(ctx, "deg")
    return {"value": math.sin(math.radians(degrees))}


KINDS = [add, subtract, multiply, divide, random_float, clamp, sine]
