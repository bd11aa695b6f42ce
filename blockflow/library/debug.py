"""
Debug output.
"""

from blockflow.context import BehaviorContext
from blockflow.node import node_kind


@node_kind(
    "debug.log",
    display_name="Log",
    category="Debug",
    inputs={
        "message": {"value_type": "any", "default_literal": ""},
        "level": {"value_type": "string", "default_literal": "info"},
    },
)
async def log(ctx: BehaviorContext) -> None:
    """Write a message to the program log."""
    message = await ctx.pull("message")
    ctx.log(await ctx.pull("level"), message)


KINDS = [log]
