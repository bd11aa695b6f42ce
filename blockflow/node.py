"""
Node instances and the decorator that turns a function into a node kind.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from blockflow.types import PortSpec, Shape

if TYPE_CHECKING:
    from blockflow.registry import Behavior, NodeKindDefinition, PortsArg


@dataclass
class NodeInstance:
    """
    A node placed in a graph.

    Instances reference their kind by id only; the definition is looked up
    again every time the node executes, so re-registering a kind changes the
    behavior of existing instances from their next execution on.
    """

    id: str
    kind_id: str
    literal_inputs: dict[str, Any] = field(default_factory=dict)
    extension_state: dict[str, Any] = field(default_factory=dict)
    last_outputs: dict[str, Any] = field(default_factory=dict)
    errored: bool = False
    error_message: Optional[str] = None

    def mark_errored(self, message: str) -> None:
        self.errored = True
        self.error_message = message

    def clear_error(self) -> None:
        self.errored = False
        self.error_message = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind_id": self.kind_id,
            "literal_inputs": dict(self.literal_inputs),
            "errored": self.errored,
            "error_message": self.error_message,
        }


def node_kind(
    kind_id: str,
    display_name: Optional[str] = None,
    category: str = "General",
    inputs: "PortsArg" = None,
    outputs: "PortsArg" = None,
    shape: Union[Shape, str] = Shape.STATEMENT,
    auto_continue: bool = True,
    teardown: Optional[Callable[[NodeInstance], None]] = None,
    description: Optional[str] = None,
) -> Callable[["Behavior"], "Behavior"]:
    """
    Decorator to attach a NodeKindDefinition to a behavior function.

    Args:
        kind_id: Registry identifier (e.g., "math.add")
        display_name: Palette label, defaults to the kind id
        category: Palette grouping
        inputs: Input port definitions
        outputs: Output port definitions
        shape: statement, expression (data-only) or event
        auto_continue: Advance the default exec output after the behavior
        teardown: Called with the instance when execution stops
        description: Human-readable description

    Returns:
        Decorated function with attached definition

    Example:
        @node_kind(
            "math.add",
            shape="expression",
            inputs={"a": {"value_type": "number", "default_literal": 0}},
            outputs={"value": {"value_type": "number"}},
        )
        async def add(ctx):
            return {"value": await ctx.pull("a") + 1}
    """
    from blockflow.registry import NodeKindDefinition

    def decorator(func: "Behavior") -> "Behavior":
        """Attach definition to the function."""
        func.__node_kind__ = NodeKindDefinition(  # type: ignore[attr-defined]
            kind_id=kind_id,
            display_name=display_name or kind_id,
            category=category,
            inputs=inputs,
            outputs=outputs,
            behavior=func,
            shape=shape,
            auto_continue=auto_continue,
            teardown=teardown,
            description=description or (func.__doc__ or "").strip() or None,
        )
        return func

    return decorator


def port_list(ports: "PortsArg", direction: str) -> list[PortSpec]:
    """
    Normalise port declarations to a list of PortSpec.

    Accepts a list of PortSpec, or a mapping of port id to PortSpec or to a
    dict of PortSpec keyword arguments.
    """
    from blockflow.types import Direction

    if not ports:
        return []

    wanted = Direction(direction)
    result: list[PortSpec] = []
    items = ports.items() if isinstance(ports, dict) else ((None, p) for p in ports)
    for key, value in items:
        if isinstance(value, PortSpec):
            spec = value
        elif isinstance(value, dict):
            spec = PortSpec(id=key, direction=wanted, **value)
        else:
            raise ValueError(f"Invalid port definition: {value!r}")
        if key is not None and spec.id != key:
            raise ValueError(f"Port key '{key}' does not match port id '{spec.id}'")
        if spec.direction != wanted:
            spec = PortSpec(spec.id, wanted, spec.value_type, spec.default_literal, spec.description)
        result.append(spec)
    return result
