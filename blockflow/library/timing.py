"""
Clock kinds.
"""

import time

from blockflow.context import BehaviorContext
from blockflow.node import node_kind
from blockflow.types import Shape


@node_kind(
    "time.now",
    display_name="Timestamp",
    category="Time",
    shape=Shape.EXPRESSION,
    outputs={"value": {"value_type": "number"}},
)
def now(ctx: BehaviorContext) -> dict:
    """Milliseconds since the epoch."""
    return {"value": int(time.time() * 1000)}


KINDS = [now]
