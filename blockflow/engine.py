"""
Core execution engine for block graphs.

Two disciplines run over the same graph. Control flow is pushed: a root
trigger starts at an entry node and follows exec edges depth-first, one edge
at a time. Data flow is pulled: a behavior asks for an input and the engine
resolves it through edges, invoking data-only nodes at most once per trigger.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from blockflow.config import EngineConfig
from blockflow.context import BehaviorContext, Dependency, RunContext, TriggerScope
from blockflow.errors import (
    BehaviorError,
    BlockFlowError,
    CyclicDependencyError,
    MissingLiteralError,
    NoEntryPointError,
    PortNotFoundError,
    PullDepthError,
)
from blockflow.events import (
    Event,
    NodeErroredEvent,
    NodeFinishedEvent,
    NodeStartedEvent,
    Observer,
    RunStartedEvent,
    RunStoppedEvent,
    TriggerFinishedEvent,
    TriggerStartedEvent,
)
from blockflow.graph import Graph
from blockflow.node import NodeInstance
from blockflow.registry import NodeKindDefinition, NodeRegistry
from blockflow.types import Edge, RunStatus, Shape, coerce_value

logger = logging.getLogger(__name__)

# Nested data resolutions run on one task stack before hopping to a new task
NESTED_PULLS_PER_TASK = 32


@dataclass
class TriggerResult:
    """Result of one root trigger."""

    trigger_id: str
    origin_node_id: str
    status: RunStatus
    duration_ms: float = 0.0
    nodes_executed: int = 0
    error: Optional[BlockFlowError] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.OK


@dataclass
class RunResult:
    """Result of ``Engine.run``: one entry per root trigger it started."""

    run_id: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    triggers: list[TriggerResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check if every trigger succeeded."""
        return self.status == RunStatus.OK

    @property
    def errors(self) -> list[BlockFlowError]:
        return [t.error for t in self.triggers if t.error is not None]


class Engine:
    """
    Interpreter for a block graph.

    The engine owns the graph, the global variable store and the scheduler
    bridge. Editors mutate the graph through it, drive it with ``run``,
    ``step`` and ``stop``, and watch it through ``subscribe``.

    Example:
        >>> engine = Engine()
        >>> start = engine.add_node("event.start")
        >>> log = engine.add_node("debug.log", {"message": "hi"})
        >>> engine.add_edge(Edge(start.id, "exec", log.id, "exec"))
        >>> result = await engine.run()
    """

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        graph: Optional[Graph] = None,
        config: Optional[EngineConfig] = None,
        **overrides: Any,
    ) -> None:
        """
        Initialize the engine.

        Args:
            registry: Node kinds to use (default: the builtin library)
            graph: Existing graph; must share ``registry`` when both are given
            config: Engine configuration
            **overrides: Individual EngineConfig fields, applied over ``config``
        """
        if config is None:
            config = EngineConfig(**overrides)
        elif overrides:
            config = EngineConfig(**{**config.to_dict(), **overrides})
        self.config = config

        if registry is None:
            if graph is not None:
                registry = graph.registry
            else:
                from blockflow.library import default_registry
                registry = default_registry()
        self.registry = registry
        self.graph = graph if graph is not None else Graph(registry)

        self.run_context = RunContext(config=config)
        self._tasks: set[asyncio.Task] = set()
        self._step_queue: deque[str] = deque()

    # ------------------------------------------------------------------
    # Shared state
    # ------------------------------------------------------------------

    @property
    def emitter(self):
        return self.run_context.emitter

    @property
    def variables(self):
        return self.run_context.variables

    @property
    def scheduler(self):
        return self.run_context.scheduler

    @property
    def running(self) -> bool:
        return self.run_context.running

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        """Receive every engine event."""
        self.emitter.subscribe(callback)

    def observe(self, **callbacks: Callable[..., None]) -> Observer:
        """
        Subscribe callbacks by name: ``on_node_started``,
        ``on_node_finished``, ``on_node_errored``, ``on_log``.
        """
        observer = Observer(**callbacks)
        self.emitter.subscribe(observer)
        return observer

    # ------------------------------------------------------------------
    # Registration and graph mutation
    # ------------------------------------------------------------------

    def register_kind(self, definition: NodeKindDefinition) -> NodeKindDefinition:
        """Register or replace a node kind; safe while running."""
        return self.registry.register(definition)

    def add_node(
        self,
        kind_id: str,
        literal_overrides: Optional[dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> NodeInstance:
        return self.graph.add_node(kind_id, literal_overrides, node_id)

    def remove_node(self, node_id: str) -> NodeInstance:
        """Remove a node, its edges and any timers or listeners it owns."""
        node = self.graph.nodes.get(node_id)
        if node is not None:
            self._disarm(node)
        return self.graph.remove_node(node_id)

    def add_edge(self, edge: Edge) -> Optional[Edge]:
        return self.graph.add_edge(edge)

    def connect(
        self,
        source_node_id: str,
        source_port: str,
        dest_node_id: str,
        dest_port: str,
    ) -> Edge:
        return self.graph.connect(source_node_id, source_port, dest_node_id, dest_port)

    def remove_edge(self, edge: Edge) -> None:
        self.graph.remove_edge(edge)

    def set_literal_input(self, node_id: str, port_id: str, value: Any) -> None:
        self.graph.set_literal_input(node_id, port_id, value)

    def snapshot(self):
        """Persisted representation of the graph and variable store."""
        return self.graph.to_document(self.variables.snapshot())

    def load(self, document) -> None:
        """
        Replace the graph and variables with a persisted representation.

        Raises:
            UnknownKindError, PortNotFoundError, TypeMismatchError, GraphError
        """
        graph = Graph.from_document(document, self.registry)
        self.stop()
        self.graph = graph
        self.variables.load(document.variables)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _entry_points(self) -> list[NodeInstance]:
        starts = self.graph.nodes_of_kind(self.config.start_kind)
        if not starts:
            raise NoEntryPointError(
                f"Graph has no '{self.config.start_kind}' node to start from"
            )
        return starts

    def _event_nodes(self) -> list[NodeInstance]:
        """Event nodes other than start nodes; running arms them."""
        armed = []
        for node in self.graph.nodes.values():
            if node.kind_id == self.config.start_kind or node.kind_id not in self.registry:
                continue
            if self.registry.lookup(node.kind_id).shape == Shape.EVENT:
                armed.append(node)
        return armed

    def _begin(self) -> None:
        self.run_context.begin()
        for node in self.graph.nodes.values():
            node.clear_error()

    async def run(self) -> RunResult:
        """
        Execute every start node as an independent root trigger.

        Start triggers run concurrently, interleaving at suspension points;
        other event nodes (intervals, listeners) are armed first. Returns when
        every start trigger has finished; armed timers keep firing until
        ``stop``.

        Returns:
            RunResult with one TriggerResult per start or armed node

        Raises:
            NoEntryPointError: If the graph has no start node
        """
        starts = self._entry_points()
        self._begin()
        run_id = self.run_context.run_id
        started_at = datetime.now(timezone.utc)
        self.emitter.emit(RunStartedEvent(meta={
            "run_id": run_id,
            "entry_points": [node.id for node in starts],
        }))

        results: list[TriggerResult] = []
        for node in self._event_nodes():
            results.append(await self._run_trigger(node.id, origin="arm"))

        tasks = [self._spawn(self._run_trigger(node.id, origin="start")) for node in starts]
        results.extend(await asyncio.gather(*tasks))

        finished_at = datetime.now(timezone.utc)
        if any(r.status == RunStatus.ERROR for r in results):
            status = RunStatus.ERROR
        elif not self.running or any(r.status == RunStatus.CANCELLED for r in results):
            status = RunStatus.CANCELLED
        else:
            status = RunStatus.OK

        return RunResult(
            run_id=run_id,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=(finished_at - started_at).total_seconds() * 1000,
            triggers=results,
        )

    async def step(self) -> TriggerResult:
        """
        Execute exactly one root trigger to completion, for debugging.

        The first call queues every start node, then every other event node;
        each call runs the next queued entry. Once the queue is drained the
        next call starts over. Queued nodes removed in the meantime are
        skipped.

        Raises:
            NoEntryPointError: If the graph has no start node
        """
        node_id = None
        while node_id not in self.graph.nodes:
            if not self._step_queue:
                starts = self._entry_points()
                self._begin()
                self._step_queue.extend(node.id for node in starts)
                self._step_queue.extend(node.id for node in self._event_nodes())
            node_id = self._step_queue.popleft()
        origin = "start" if self.graph.nodes[node_id].kind_id == self.config.start_kind else "arm"
        return await self._run_trigger(node_id, origin=origin)

    def stop(self) -> None:
        """
        Stop execution: clear the running flag, cancel every timer and
        listener, wake pending delays and call each node's teardown.

        Behaviors in the middle of a synchronous slice finish it; loops stop
        at their next iteration boundary.
        """
        self.run_context.stop()
        cancelled = self.scheduler.cancel_all()
        self.scheduler.wake_all()
        for node in list(self.graph.nodes.values()):
            self._teardown(node)
        self._step_queue.clear()
        self.emitter.emit(RunStoppedEvent(meta={"registrations_cancelled": cancelled}))
        logger.info("Execution stopped, %d registrations cancelled", cancelled)

    async def join(self) -> list[TriggerResult]:
        """Wait until no root trigger is in flight."""
        results: list[TriggerResult] = []
        while self._tasks:
            results.extend(await asyncio.gather(*list(self._tasks)))
        return results

    def fire(
        self,
        node_id: str,
        port_id: str = "exec",
        outputs: Optional[dict[str, Any]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a new root trigger that continues from a node's exec output.

        Timers and listeners call this from the scheduler. ``outputs`` are
        published as the node's outputs in the new trigger (e.g. an event
        payload).

        Returns:
            The trigger task, or None when execution is stopped
        """
        if not self.running or node_id not in self.graph.nodes:
            return None
        return self._spawn(self._run_trigger(
            node_id, origin="event", continue_from=port_id, seed_outputs=outputs,
        ))

    def dispatch_event(self, event_name: str, payload: Any = None) -> int:
        """Deliver an external event to listener nodes; returns listeners called."""
        return self.scheduler.dispatch(event_name, payload)

    async def run_node(self, node_id: str) -> TriggerResult:
        """
        Execute one node and its control-flow continuation as a fresh root
        trigger, raising instead of containing errors.

        Raises:
            BlockFlowError: Whatever the trigger failed with
        """
        if not self.running:
            self._begin()
        result = await self._run_trigger(node_id, origin="direct")
        if result.error is not None:
            raise result.error
        return result

    async def pull(self, node_id: str, port_id: str) -> Any:
        """
        Resolve one data input in a fresh memoization scope.

        Raises:
            PortNotFoundError, CyclicDependencyError, PullDepthError,
            MissingLiteralError, BehaviorError
        """
        scope = TriggerScope(origin_node_id=node_id)
        value, _ = await self._pull_input(node_id, port_id, scope)
        return value

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _disarm(self, node: NodeInstance) -> None:
        self.scheduler.cancel_owner(node.id)
        self._teardown(node)

    def _teardown(self, node: NodeInstance) -> None:
        if node.kind_id not in self.registry:
            return
        teardown = self.registry.lookup(node.kind_id).teardown
        if teardown is None:
            return
        try:
            teardown(node)
        except Exception:
            logger.exception("Teardown failed for node '%s'", node.id)

    # ------------------------------------------------------------------
    # Control flow
    # ------------------------------------------------------------------

    async def _run_trigger(
        self,
        node_id: str,
        origin: str,
        continue_from: Optional[str] = None,
        seed_outputs: Optional[dict[str, Any]] = None,
    ) -> TriggerResult:
        """
        Run one root trigger to completion, containing its errors.
        """
        scope = TriggerScope(origin_node_id=node_id)
        if not self.running:
            return TriggerResult(scope.trigger_id, node_id, RunStatus.CANCELLED)
        if origin == "arm":
            # Re-arming replaces the registrations of an earlier run
            self._disarm(self.graph._require_node(node_id))

        for port_id, value in (seed_outputs or {}).items():
            scope.publish(node_id, port_id, value)

        self.emitter.emit(TriggerStartedEvent(
            trigger_id=scope.trigger_id, node_id=node_id, meta={"origin": origin},
        ))
        start_time = time.time()
        error: Optional[BlockFlowError] = None
        try:
            if continue_from is None:
                await self._run_chain(node_id, scope)
            else:
                await self._follow(node_id, continue_from, scope)
        except BlockFlowError as e:
            e.trigger_id = e.trigger_id or scope.trigger_id
            error = e
            logger.warning("Trigger %s from '%s' failed: %s", scope.trigger_id, node_id, e)

        if error is not None:
            status = RunStatus.ERROR
        elif not self.running:
            status = RunStatus.CANCELLED
        else:
            status = RunStatus.OK

        duration_ms = (time.time() - start_time) * 1000
        self.emitter.emit(TriggerFinishedEvent(
            trigger_id=scope.trigger_id,
            node_id=node_id,
            meta={
                "status": status.value,
                "duration_ms": duration_ms,
                "nodes_executed": scope.nodes_executed,
                "origin": origin,
            },
        ))
        return TriggerResult(
            trigger_id=scope.trigger_id,
            origin_node_id=node_id,
            status=status,
            duration_ms=duration_ms,
            nodes_executed=scope.nodes_executed,
            error=error,
        )

    async def _run_chain(self, node_id: str, scope: TriggerScope) -> None:
        """
        Execute a node and then its automatic continuation.

        The last continuation edge is followed iteratively rather than
        recursively so that long linear chains do not deepen the stack.
        Once execution is stopped no further node starts.
        """
        current: Optional[str] = node_id
        while current is not None and self.running:
            edges = await self._execute(current, scope)
            if not edges:
                return
            for edge in edges[:-1]:
                await self._run_chain(edge.dest_node_id, scope)
            current = edges[-1].dest_node_id

    async def _follow(self, node_id: str, port_id: str, scope: TriggerScope) -> None:
        """Run every branch leaving an exec output, in edge order."""
        for edge in self.graph.outgoing_edges(node_id, port_id):
            await self._run_chain(edge.dest_node_id, scope)

    def _exec_edges(self, node_id: str, definition: NodeKindDefinition,
                    port_id: Optional[str] = None) -> list[Edge]:
        exec_ports = {p.id for p in definition.exec_outputs()}
        return [
            edge for edge in self.graph.outgoing_edges(node_id, port_id)
            if edge.source_port in exec_ports
        ]

    async def _execute(self, node_id: str, scope: TriggerScope) -> list[Edge]:
        """
        Invoke a node reached by control flow.

        Returns:
            Exec edges the engine must still follow
        """
        node = self.graph._require_node(node_id)
        definition = self.registry.lookup(node.kind_id)

        if definition.behavior is None:
            self._emit_started(node, definition, scope, "exec")
            start_time = time.time()
            scope.nodes_executed += 1
            self._emit_finished(node, definition, scope, start_time)
            return self._exec_edges(node_id, definition)

        ctx = BehaviorContext(self, node, definition, scope, mode="exec")
        result = await self._invoke(node, definition, ctx)

        chosen: Optional[str] = None
        if isinstance(result, str):
            port = definition.output_port(result)
            if port is None or not port.is_exec:
                error = BehaviorError(
                    f"Node '{node_id}' returned '{result}', which is not an exec output "
                    f"of '{definition.kind_id}'",
                    node_id=node_id,
                    trigger_id=scope.trigger_id,
                )
                self._report_error(node, error, scope)
                raise error
            chosen = result
        elif isinstance(result, dict):
            for port_id, value in result.items():
                scope.publish(node_id, port_id, value)

        if chosen is None and not ctx.advanced and not ctx.halted and definition.auto_continue:
            chosen = definition.default_exec_output
        if chosen is None or chosen in ctx.advanced:
            return []
        return self._exec_edges(node_id, definition, chosen)

    async def _invoke(
        self,
        node: NodeInstance,
        definition: NodeKindDefinition,
        ctx: BehaviorContext,
    ) -> Any:
        """
        Call a behavior, reporting and wrapping any exception it raises.

        An error is reported once, at the node where it originated; errors
        propagating up through ``advance`` or ``pull`` from other nodes have
        already been reported and pass through unchanged.
        """
        scope = ctx.scope
        self._emit_started(node, definition, scope, ctx.mode)
        start_time = time.time()
        try:
            result = definition.behavior(ctx)  # type: ignore[misc]
            if inspect.isawaitable(result):
                result = await result
        except BlockFlowError as e:
            if not e.reported:
                e.node_id = e.node_id or node.id
                e.trigger_id = e.trigger_id or scope.trigger_id
                self._report_error(node, e, scope)
            raise
        except Exception as e:
            error = BehaviorError(
                f"Node '{node.id}' ({definition.kind_id}) failed: {e}",
                original=e,
                node_id=node.id,
                trigger_id=scope.trigger_id,
                metadata={"error_type": type(e).__name__},
            )
            self._report_error(node, error, scope)
            raise error from e

        scope.nodes_executed += 1
        if isinstance(result, dict):
            node.last_outputs = dict(result)
        elif node.id in scope.outputs:
            node.last_outputs = dict(scope.outputs[node.id])
        self._emit_finished(node, definition, scope, start_time)
        return result

    # ------------------------------------------------------------------
    # Data flow
    # ------------------------------------------------------------------

    async def _pull_input(
        self,
        node_id: str,
        port_id: str,
        scope: TriggerScope,
    ) -> tuple[Any, dict[Dependency, int]]:
        """
        Resolve a data input of a node.

        Returns:
            (value, dependencies) where dependencies are the published
            outputs and variables the value was computed from
        """
        node = self.graph._require_node(node_id)
        definition = self.registry.lookup(node.kind_id)
        port = definition.input_port(port_id)
        if port is None or port.is_exec:
            raise PortNotFoundError(
                f"Node kind '{definition.kind_id}' has no data input '{port_id}'"
            )

        edge = self.graph.incoming_edge(node_id, port_id)
        if edge is not None:
            return await self._resolve_output(edge.source_node_id, edge.source_port, scope)

        if port_id in node.literal_inputs:
            return coerce_value(node.literal_inputs[port_id], port.value_type), {}
        if port.has_default:
            return coerce_value(port.default_literal, port.value_type), {}
        if self.config.missing_literal_policy == "none":
            return None, {}
        raise MissingLiteralError(
            f"Input '{port_id}' of node '{node_id}' has no edge, literal or default"
        )

    async def _resolve_output(
        self,
        source_id: str,
        port_id: str,
        scope: TriggerScope,
    ) -> tuple[Any, dict[Dependency, int]]:
        """
        Produce the value of an output port within a trigger.

        Statement and event nodes are never invoked by a pull: their outputs
        exist only once published in this trigger. Data-only nodes are invoked
        on first pull and their results reused for the rest of the trigger
        until something they read changes.
        """
        source = self.graph._require_node(source_id)
        definition = self.registry.lookup(source.kind_id)
        if definition.output_port(port_id) is None:
            raise PortNotFoundError(
                f"Node '{source_id}' ({definition.kind_id}) has no output '{port_id}'"
            )

        if not definition.data_only:
            published = scope.outputs.get(source_id, {})
            if port_id in published:
                key = (source_id, port_id)
                return published[port_id], {("output",) + key: scope.epochs.get(key, 0)}
            raise MissingLiteralError(
                f"Output '{port_id}' of node '{source_id}' has not been produced "
                f"in this trigger"
            )

        dependencies = scope.cached.get(source_id)
        if dependencies is not None and self._still_current(dependencies, scope):
            return self._output_value(source_id, port_id, scope), dependencies

        if source_id in scope.resolving:
            raise CyclicDependencyError(scope.path + [(source_id, port_id)])
        if len(scope.path) >= self.config.max_pull_depth:
            raise PullDepthError(
                f"Data resolution deeper than {self.config.max_pull_depth} nodes "
                f"at '{source_id}.{port_id}'"
            )

        outputs = scope.reset_node(source_id)
        ctx = BehaviorContext(self, source, definition, scope, mode="pull")
        scope.path.append((source_id, port_id))
        scope.resolving.add(source_id)
        try:
            invocation = self._invoke(source, definition, ctx)
            if len(scope.path) % NESTED_PULLS_PER_TASK == 0:
                # Continue on a fresh task so chain length never reaches the
                # interpreter's recursion limit
                result = await asyncio.ensure_future(invocation)
            else:
                result = await invocation
        finally:
            scope.path.pop()
            scope.resolving.discard(source_id)

        if isinstance(result, dict):
            outputs.update(result)
        elif result is not None:
            data_outputs = definition.data_outputs()
            if len(data_outputs) == 1:
                outputs[data_outputs[0].id] = result
        source.last_outputs = dict(outputs)

        scope.cached[source_id] = ctx.dependencies
        return self._output_value(source_id, port_id, scope), ctx.dependencies

    def _still_current(self, dependencies: dict[Dependency, int], scope: TriggerScope) -> bool:
        variables = self.variables
        for dependency, seen in dependencies.items():
            source = dependency[0]
            if source == "output":
                current = scope.epochs.get(dependency[1:], 0)
            elif source == "variable":
                current = variables.version_of(dependency[1])
            else:
                current = variables.version
            if current != seen:
                return False
        return True

    def _output_value(self, node_id: str, port_id: str, scope: TriggerScope) -> Any:
        outputs = scope.outputs.get(node_id, {})
        if port_id not in outputs:
            raise MissingLiteralError(
                f"Node '{node_id}' did not produce output '{port_id}'"
            )
        return outputs[port_id]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_started(self, node: NodeInstance, definition: NodeKindDefinition,
                      scope: TriggerScope, mode: str) -> None:
        self.emitter.emit(NodeStartedEvent(
            trigger_id=scope.trigger_id,
            node_id=node.id,
            meta={"kind_id": definition.kind_id, "mode": mode},
        ))

    def _emit_finished(self, node: NodeInstance, definition: NodeKindDefinition,
                       scope: TriggerScope, start_time: float) -> None:
        self.emitter.emit(NodeFinishedEvent(
            trigger_id=scope.trigger_id,
            node_id=node.id,
            meta={
                "kind_id": definition.kind_id,
                "duration_ms": (time.time() - start_time) * 1000,
                "outputs_present": list(scope.outputs.get(node.id, {}).keys()),
            },
        ))

    def _report_error(self, node: NodeInstance, error: BlockFlowError,
                      scope: TriggerScope) -> None:
        error.reported = True
        node.mark_errored(error.message)
        self.emitter.emit(NodeErroredEvent(
            trigger_id=scope.trigger_id,
            node_id=node.id,
            meta={
                "error_class": type(error).__name__,
                "error_message": error.message,
            },
        ))
