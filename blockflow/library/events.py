"""
Entry-point kinds: start, interval and external-event listener.
"""

from blockflow.context import BehaviorContext
from blockflow.node import NodeInstance, node_kind
from blockflow.registry import NodeKindDefinition
from blockflow.types import Shape

START = NodeKindDefinition(
    kind_id="event.start",
    display_name="On Start",
    category="Events",
    shape=Shape.EVENT,
    description="Entry point; every start node runs as its own root trigger.",
)


def _forget_registration(node: NodeInstance) -> None:
    node.extension_state.pop("registration", None)


@node_kind(
    "time.interval",
    display_name="On Interval",
    category="Time",
    shape=Shape.EVENT,
    inputs={"ms": {"value_type": "number", "default_literal": 1000}},
    outputs={"tick": {"value_type": "number"}},
    auto_continue=False,
    teardown=_forget_registration,
)
async def on_interval(ctx: BehaviorContext) -> None:
    """Start a new root trigger every ``ms`` milliseconds."""
    ms = await ctx.pull("ms")
    ctx.state["registration"] = ctx.every(float(ms) / 1000.0)


@node_kind(
    "event.listen",
    display_name="On Event",
    category="Events",
    shape=Shape.EVENT,
    inputs={"name": {"value_type": "string", "default_literal": ""}},
    outputs={"payload": {"value_type": "any"}},
    auto_continue=False,
    teardown=_forget_registration,
)
async def on_event(ctx: BehaviorContext) -> None:
    """Start a new root trigger each time the named external event arrives."""
    name = await ctx.pull("name")
    if not name:
        # Nothing to listen to
        return
    ctx.state["registration"] = ctx.listen(name)


KINDS = [on_interval, on_event]
DEFINITIONS = [START]
