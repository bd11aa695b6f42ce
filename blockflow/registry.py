"""
Node registry for runtime-extensible node kinds.

A kind is a tagged record: its ports plus the behavior function that runs
when an instance executes. Dispatch is a single dictionary lookup, and
registration is allowed at any time, including while the engine is running,
so plugins can be loaded late.
"""

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from blockflow.errors import UnknownKindError
from blockflow.node import NodeInstance, port_list
from blockflow.types import EXEC_PORT, Direction, PortSpec, Shape, ValueType

if TYPE_CHECKING:
    from blockflow.context import BehaviorContext

logger = logging.getLogger(__name__)

# Behavior signature: (ctx) -> None | exec output name | {output: value}
Behavior = Callable[["BehaviorContext"], Union[Any, Awaitable[Any]]]
PortsArg = Optional[Union[list[PortSpec], dict[str, Union[PortSpec, dict[str, Any]]]]]


@dataclass
class NodeKindDefinition:
    """Ports and behavior of one node kind."""

    kind_id: str
    display_name: Optional[str] = None
    category: str = "General"
    inputs: PortsArg = None
    outputs: PortsArg = None
    behavior: Optional[Behavior] = None
    shape: Shape = Shape.STATEMENT
    auto_continue: bool = True
    teardown: Optional[Callable[[NodeInstance], None]] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        """Normalise ports and insert the implicit exec ports."""
        self.shape = Shape(self.shape)
        self.display_name = self.display_name or self.kind_id
        self.inputs = port_list(self.inputs, "in")
        self.outputs = port_list(self.outputs, "out")
        self._validate_ports()

        if self.shape == Shape.STATEMENT and not self.exec_inputs():
            self.inputs.insert(0, PortSpec.exec_in())
        if self.shape != Shape.EXPRESSION and not self.exec_outputs():
            self.outputs.insert(0, PortSpec.exec_out())

    def _validate_ports(self) -> None:
        for ports in (self.inputs, self.outputs):
            seen: set[str] = set()
            for port in ports:
                if port.id in seen:
                    raise ValueError(
                        f"Duplicate port '{port.id}' on node kind '{self.kind_id}'"
                    )
                seen.add(port.id)

        has_exec = any(p.is_exec for p in self.inputs + self.outputs)
        if self.shape == Shape.EXPRESSION and has_exec:
            raise ValueError(
                f"Data-only node kind '{self.kind_id}' cannot declare exec ports"
            )
        if self.shape == Shape.EVENT and any(p.is_exec for p in self.inputs):
            raise ValueError(
                f"Event node kind '{self.kind_id}' cannot declare exec inputs"
            )

    @property
    def data_only(self) -> bool:
        return self.shape == Shape.EXPRESSION

    def input_port(self, port_id: str) -> Optional[PortSpec]:
        return next((p for p in self.inputs if p.id == port_id), None)

    def output_port(self, port_id: str) -> Optional[PortSpec]:
        return next((p for p in self.outputs if p.id == port_id), None)

    def port(self, port_id: str, direction: Direction) -> Optional[PortSpec]:
        if Direction(direction) == Direction.IN:
            return self.input_port(port_id)
        return self.output_port(port_id)

    def exec_inputs(self) -> list[PortSpec]:
        return [p for p in self.inputs if p.is_exec]

    def exec_outputs(self) -> list[PortSpec]:
        return [p for p in self.outputs if p.is_exec]

    def data_inputs(self) -> list[PortSpec]:
        return [p for p in self.inputs if not p.is_exec]

    def data_outputs(self) -> list[PortSpec]:
        return [p for p in self.outputs if not p.is_exec]

    @property
    def default_exec_output(self) -> Optional[str]:
        """The exec output followed when a behavior does not choose one."""
        if self.output_port(EXEC_PORT) is not None and self.output_port(EXEC_PORT).is_exec:
            return EXEC_PORT
        return None

    def default_literals(self) -> dict[str, Any]:
        """Default literal for every data input that declares one."""
        return {
            p.id: p.default_literal
            for p in self.data_inputs()
            if p.has_default
        }

    def to_dict(self) -> dict[str, Any]:
        """Export to dictionary for UI consumption."""
        return {
            "kind_id": self.kind_id,
            "display_name": self.display_name,
            "category": self.category,
            "shape": self.shape.value,
            "description": self.description or self.display_name,
            "inputs": [p.to_dict() for p in self.inputs],
            "outputs": [p.to_dict() for p in self.outputs],
        }


class NodeRegistry:
    """
    Registry of node kinds available to graphs.

    Plugins register kinds, the palette lists them, the graph store checks
    ports against them and the engine looks up behaviors in them.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._kinds: dict[str, NodeKindDefinition] = {}
        self._listeners: list[Callable[[NodeKindDefinition], None]] = []

    def __contains__(self, kind_id: str) -> bool:
        return kind_id in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)

    def register(self, definition: NodeKindDefinition) -> NodeKindDefinition:
        """
        Register a node kind, replacing any earlier definition with the same id.

        Live instances of a replaced kind are not migrated: they keep their
        literal inputs and edges and pick up the new behavior the next time
        they execute.

        Args:
            definition: Kind definition to store

        Returns:
            The stored definition
        """
        replaced = definition.kind_id in self._kinds
        self._kinds[definition.kind_id] = definition
        logger.debug(
            "%s node kind '%s'", "Replaced" if replaced else "Registered", definition.kind_id
        )
        for listener in list(self._listeners):
            listener(definition)
        return definition

    def kind(
        self,
        kind_id: str,
        display_name: Optional[str] = None,
        category: str = "General",
        inputs: PortsArg = None,
        outputs: PortsArg = None,
        shape: Union[Shape, str] = Shape.STATEMENT,
        auto_continue: bool = True,
        teardown: Optional[Callable[[NodeInstance], None]] = None,
        description: Optional[str] = None,
    ) -> Callable[[Behavior], Behavior]:
        """
        Decorator to define and register a node kind in one step.

        Example:
            >>> @registry.kind("debug.log", inputs={"message": {"default_literal": ""}})
            ... async def log(ctx):
            ...     ctx.log("info", await ctx.pull("message"))
        """
        def decorator(func: Behavior) -> Behavior:
            self.register(NodeKindDefinition(
                kind_id=kind_id,
                display_name=display_name,
                category=category,
                inputs=inputs,
                outputs=outputs,
                behavior=func,
                shape=shape,
                auto_continue=auto_continue,
                teardown=teardown,
                description=description or (func.__doc__ or "").strip() or None,
            ))
            return func

        return decorator

    def register_from_decorator(self, func: Behavior) -> Behavior:
        """
        Register a function previously decorated with ``@node_kind``.

        Raises:
            ValueError: If the function carries no definition
        """
        definition = getattr(func, "__node_kind__", None)
        if definition is None:
            raise ValueError(
                f"Function {func!r} must be decorated with @node_kind before registering"
            )
        # Copy so that registering the same function twice never shares state
        self.register(replace(definition, inputs=list(definition.inputs),
                              outputs=list(definition.outputs)))
        return func

    def register_expression(
        self,
        kind_id: str,
        source: str,
        inputs: PortsArg = None,
        output_type: Union[ValueType, str] = ValueType.ANY,
        display_name: Optional[str] = None,
        category: str = "Plugins",
        description: Optional[str] = None,
    ) -> NodeKindDefinition:
        """
        Register a data-only kind whose behavior is a sandboxed expression.

        The expression sees only the node's pulled inputs, by port id, and
        the pure functions the sandbox exposes. It cannot reach the engine,
        the graph, the variable store or the host process.

        Args:
            kind_id: Registry identifier
            source: Expression text (e.g. "a * 2 + b")
            inputs: Input port definitions; their ids are the names in scope
            output_type: Value type of the single ``value`` output

        Returns:
            The stored definition

        Raises:
            SandboxError: If the expression uses disallowed syntax
        """
        from blockflow.sandbox import SafeExpression

        expression = SafeExpression(source)
        input_ports = port_list(inputs, "in")

        async def evaluate(ctx: "BehaviorContext") -> dict[str, Any]:
            names = {port.id: await ctx.pull(port.id) for port in input_ports}
            return {"value": expression.evaluate(names)}

        return self.register(NodeKindDefinition(
            kind_id=kind_id,
            display_name=display_name,
            category=category,
            inputs=input_ports,
            outputs=[PortSpec("value", Direction.OUT, ValueType(output_type))],
            behavior=evaluate,
            shape=Shape.EXPRESSION,
            description=description or source,
        ))

    def subscribe(self, callback: Callable[[NodeKindDefinition], None]) -> None:
        """Call ``callback`` with every definition registered from now on."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[NodeKindDefinition], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def lookup(self, kind_id: str) -> NodeKindDefinition:
        """
        Get the latest definition of a kind.

        Raises:
            UnknownKindError: If the kind is not registered
        """
        try:
            return self._kinds[kind_id]
        except KeyError:
            raise UnknownKindError(kind_id) from None

    get = lookup

    def list_kinds(self, category: Optional[str] = None) -> list[dict[str, Any]]:
        """
        List registered kinds for palette consumption.

        Args:
            category: Optional filter by category
        """
        kinds = self._kinds.values()

        if category:
            kinds = [k for k in kinds if k.category == category]

        return [k.to_dict() for k in kinds]

    def list_categories(self) -> list[str]:
        """
        List all categories for palette navigation.

        Returns:
            Sorted list of unique categories
        """
        return sorted({k.category for k in self._kinds.values() if k.category})
