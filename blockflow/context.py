"""
Runtime context for runs, root triggers and node behaviors.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from blockflow.errors import PortNotFoundError
from blockflow.events import EventEmitter, LogEvent
from blockflow.scheduler import Registration, Scheduler
from blockflow.variables import VariableStore

if TYPE_CHECKING:
    from blockflow.config import EngineConfig
    from blockflow.engine import Engine
    from blockflow.node import NodeInstance
    from blockflow.registry import NodeKindDefinition

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# ("output", node_id, port_id), ("variable", name) or ("variables",)
Dependency = tuple


@dataclass
class RunContext:
    """
    State shared by every root trigger of an engine.
    """

    config: EngineConfig
    emitter: EventEmitter = field(default_factory=EventEmitter)
    variables: VariableStore = field(default_factory=VariableStore)
    scheduler: Optional[Scheduler] = None
    run_id: Optional[str] = None
    _running: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.scheduler is None:
            self.scheduler = Scheduler(self.config.min_interval_ms)

    def begin(self) -> str:
        """Start a new run and return its id."""
        self.run_id = str(uuid.uuid4())
        self._running = True
        return self.run_id

    def stop(self) -> None:
        """Clear the running flag; loops and trigger entry observe it."""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running


@dataclass
class TriggerScope:
    """
    Memoization scope of one root trigger.

    ``outputs`` holds every value computed or published in this trigger,
    keyed by node id then output port. A data-only node runs once per
    trigger: ``cached`` maps it to the dependencies its computation read,
    each stamped with the version seen at the time. The cached outputs stay
    valid until one of those dependencies moves, e.g. a loop publishing its
    next ``index`` or a variable being written. ``path`` is the chain of
    (node, port) pairs currently being resolved.
    """

    origin_node_id: str
    trigger_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    epochs: dict[tuple[str, str], int] = field(default_factory=dict)
    cached: dict[str, dict[Dependency, int]] = field(default_factory=dict)
    path: list[tuple[str, str]] = field(default_factory=list)
    resolving: set[str] = field(default_factory=set)
    nodes_executed: int = 0

    def publish(self, node_id: str, port_id: str, value: Any) -> None:
        """Publish a statement output, invalidating values computed from it."""
        self.outputs.setdefault(node_id, {})[port_id] = value
        self.epochs[(node_id, port_id)] = self.epochs.get((node_id, port_id), 0) + 1

    def reset_node(self, node_id: str) -> dict[str, Any]:
        self.cached.pop(node_id, None)
        self.outputs[node_id] = {}
        return self.outputs[node_id]


class BehaviorContext:
    """
    Context exposed to a node behavior for one invocation.

    Attributes:
        node: The executing instance
        definition: Its kind definition, as looked up for this invocation
        mode: "exec" when reached by control flow, "pull" when invoked to
            compute a data value
    """

    def __init__(
        self,
        engine: Engine,
        node: NodeInstance,
        definition: NodeKindDefinition,
        scope: TriggerScope,
        mode: str = "exec",
    ) -> None:
        self._engine = engine
        self._run = engine.run_context
        self.node = node
        self.definition = definition
        self.scope = scope
        self.mode = mode
        self.advanced: list[str] = []
        self.halted = False
        self.dependencies: dict[Dependency, int] = {}
        base_logger = logging.getLogger(f"blockflow.node.{node.id}")
        self.logger = logging.LoggerAdapter(
            base_logger,
            {"trigger_id": scope.trigger_id, "node_id": node.id},
        )

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def trigger_id(self) -> str:
        return self.scope.trigger_id

    @property
    def variables(self) -> VariableStore:
        """The global variable store, shared by every trigger."""
        return self._run.variables

    @property
    def scheduler(self) -> Scheduler:
        return self._run.scheduler  # type: ignore[return-value]

    @property
    def state(self) -> dict[str, Any]:
        """Per-instance extension state that survives across triggers."""
        return self.node.extension_state

    @property
    def running(self) -> bool:
        return self._run.running

    def input(self, port_id: str, default: Any = None) -> Any:
        """Raw literal value of an input, ignoring edges."""
        return self.node.literal_inputs.get(port_id, default)

    def read_variable(self, name: str, default: Any = None) -> Any:
        """
        Read a global variable. Outputs computed from it are reused within
        the trigger until the variable is written.
        """
        self.dependencies[("variable", name)] = self.variables.version_of(name)
        return self.variables.get(name, default)

    def read_variables(self) -> dict[str, Any]:
        """Snapshot every global variable; any write invalidates the result."""
        self.dependencies[("variables",)] = self.variables.version
        return self.variables.snapshot()

    async def pull(self, port_id: str) -> Any:
        """
        Resolve a data input: the connected output if there is an edge,
        the literal (coerced to the port type) otherwise.

        Raises:
            PortNotFoundError, CyclicDependencyError, PullDepthError,
            MissingLiteralError
        """
        value, dependencies = await self._engine._pull_input(self.node.id, port_id, self.scope)
        self.dependencies.update(dependencies)
        return value

    async def advance(self, port_id: str) -> None:
        """
        Continue control flow along an exec output, running every connected
        branch to completion, one after another, before returning.

        Raises:
            PortNotFoundError: If the kind has no such exec output
        """
        port = self.definition.output_port(port_id)
        if port is None or not port.is_exec:
            raise PortNotFoundError(
                f"Node kind '{self.definition.kind_id}' has no exec output '{port_id}'",
            )
        self.advanced.append(port_id)
        await self._engine._follow(self.node.id, port_id, self.scope)

    def memoize(self, port_id: str, value: Any) -> None:
        """Publish an output value for the remainder of this root trigger."""
        self.scope.publish(self.node.id, port_id, value)

    def halt(self) -> None:
        """Do not follow the default exec output after this behavior returns."""
        self.halted = True

    async def checkpoint(self) -> bool:
        """
        Yield to other triggers, then report whether execution may continue.

        Loop behaviors call this once per iteration so that ``Engine.stop``
        takes effect between iterations.
        """
        await asyncio.sleep(0)
        return self._run.running

    async def sleep(self, seconds: float) -> bool:
        """
        Suspend this trigger.

        Returns:
            True if the delay elapsed and execution is still running
        """
        elapsed = await self.scheduler.sleep(seconds)
        return elapsed and self._run.running

    def log(self, level: str, message: Any) -> None:
        """Write to the program log: observers get a LogEvent."""
        level = level.lower() if isinstance(level, str) else "info"
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), "%s", message)
        self._run.emitter.emit(LogEvent(
            trigger_id=self.scope.trigger_id,
            node_id=self.node.id,
            meta={"level": level, "message": message},
        ))

    def every(self, seconds: float, port_id: str = "exec") -> Registration:
        """
        Start a new root trigger from ``port_id`` every ``seconds``.

        Each trigger sees this node's ``tick`` output set to the firing count.
        """
        node_id = self.node.id
        registration: Registration

        def fire() -> None:
            self._engine.fire(node_id, port_id, {"tick": registration.fired})

        registration = self.scheduler.every(node_id, seconds, fire)
        return registration

    def fire_later(self, seconds: float, port_id: str = "exec") -> Registration:
        """Start one new root trigger from ``port_id`` after ``seconds``."""
        node_id = self.node.id
        return self.scheduler.call_later(
            node_id, seconds, lambda: self._engine.fire(node_id, port_id)
        )

    def listen(self, event_name: str, port_id: str = "exec") -> Registration:
        """
        Start a new root trigger from ``port_id`` whenever ``event_name`` is
        dispatched; the trigger sees this node's ``payload`` output set to
        the event payload.
        """
        node_id = self.node.id

        def on_event(payload: Any) -> None:
            self._engine.fire(node_id, port_id, {"payload": payload})

        return self.scheduler.listen(node_id, event_name, on_event)

