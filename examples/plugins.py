"""
Plugin example.

Demonstrates:
- Registering a new node kind with a Python behavior
- Registering a sandboxed expression kind from user-supplied text
- Re-registering a kind: existing nodes pick up the new behavior
"""

import asyncio

from blockflow import Engine, NodeKindDefinition, node_kind


@node_kind(
    "text.shout",
    display_name="Shout",
    category="Plugins",
    shape="expression",
    inputs={"text": {"value_type": "string", "default_literal": "hello"}},
    outputs={"value": {"value_type": "string"}},
)
async def shout(ctx):
    """Uppercase with emphasis."""
    return {"value": (await ctx.pull("text")).upper() + "!"}


async def main() -> None:
    engine = Engine()
    engine.observe(on_log=lambda level, message: print(message))
    engine.registry.register_from_decorator(shout)
    engine.registry.register_expression(
        "math.hypot",
        "(a ** 2 + b ** 2) ** 0.5",
        inputs={
            "a": {"value_type": "number", "default_literal": 3},
            "b": {"value_type": "number", "default_literal": 4},
        },
        output_type="number",
        category="Plugins",
    )

    start = engine.add_node("event.start")
    first = engine.add_node("debug.log")
    second = engine.add_node("debug.log")
    loud = engine.add_node("text.shout")
    hypot = engine.add_node("math.hypot")
    engine.connect(start.id, "exec", first.id, "exec")
    engine.connect(first.id, "exec", second.id, "exec")
    engine.connect(loud.id, "value", first.id, "message")
    engine.connect(hypot.id, "value", second.id, "message")

    await engine.run()

    # Replace the plugin; the placed node keeps its edges and literals
    engine.register_kind(NodeKindDefinition(
        "text.shout",
        category="Plugins",
        shape="expression",
        inputs={"text": {"value_type": "string", "default_literal": "hello"}},
        outputs={"value": {"value_type": "string"}},
        behavior=lambda ctx: {"value": "(quietly) " + ctx.input("text")},
    ))
    await engine.run()


if __name__ == "__main__":
    asyncio.run(main())
