"""
Port compatibility and static checks for graphs.

The graph store rejects broken edges at insertion time; ``GraphValidator``
covers what can only be judged on the whole graph: data cycles, inputs that
would fail to resolve, and edges left dangling after a kind was re-registered.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

from blockflow.errors import (
    BlockFlowError,
    CyclicDependencyError,
    MissingLiteralError,
    NoEntryPointError,
    PortNotFoundError,
    UnknownKindError,
)
from blockflow.types import Edge, PortSpec, ValueType

if TYPE_CHECKING:
    from blockflow.graph import Graph


class PortCompatibilityMatcher(Protocol):
    """Protocol for pluggable port type compatibility checkers."""

    def are_compatible(self, src_port: PortSpec, dst_port: PortSpec) -> bool:
        """Check if source port can connect to destination port."""
        ...


class DefaultCompatibilityMatcher:
    """
    Exec connects only to exec; ``any`` connects to every data type; other
    data types must match exactly.
    """

    def are_compatible(self, src_port: PortSpec, dst_port: PortSpec) -> bool:
        if src_port.is_exec or dst_port.is_exec:
            return src_port.is_exec and dst_port.is_exec

        if ValueType.ANY in (src_port.value_type, dst_port.value_type):
            return True

        return src_port.value_type == dst_port.value_type


@dataclass
class GraphIssue:
    """One problem found by ``GraphValidator``."""

    code: str
    message: str
    node_ids: list[str] = field(default_factory=list)
    edge: Optional[Edge] = None
    error: Optional[BlockFlowError] = None


class GraphValidator:
    """
    Whole-graph checks run before execution or on demand by an editor.
    """

    def __init__(self, start_kind: str = "event.start") -> None:
        self.start_kind = start_kind

    def validate(self, graph: "Graph") -> None:
        """
        Raise the error of the first issue found, if any.

        Raises:
            UnknownKindError, PortNotFoundError, CyclicDependencyError,
            MissingLiteralError or NoEntryPointError
        """
        issues = self.find_issues(graph)
        if issues:
            raise issues[0].error  # type: ignore[misc]

    def find_issues(self, graph: "Graph") -> list[GraphIssue]:
        """
        Collect every issue in the graph.

        Args:
            graph: Graph to inspect

        Returns:
            Issues in a stable order: dangling edges, unknown kinds, missing
            entry point, data cycles, unbound inputs
        """
        issues: list[GraphIssue] = []
        issues.extend(self.find_dangling_edges(graph))
        issues.extend(self.find_unknown_kinds(graph))
        if not graph.nodes_of_kind(self.start_kind):
            issues.append(GraphIssue(
                code="no_entry_point",
                message=f"Graph has no '{self.start_kind}' node",
                error=NoEntryPointError(f"Graph has no '{self.start_kind}' node"),
            ))
        cycle = self.find_data_cycle(graph)
        if cycle:
            error = CyclicDependencyError(cycle)
            issues.append(GraphIssue(
                code="cyclic_dependency",
                message=error.message,
                node_ids=[node_id for node_id, _ in cycle],
                error=error,
            ))
        issues.extend(self.find_unbound_inputs(graph))
        return issues

    def find_unknown_kinds(self, graph: "Graph") -> list[GraphIssue]:
        issues = []
        for node in graph.nodes.values():
            if node.kind_id not in graph.registry:
                error = UnknownKindError(node.kind_id, node_id=node.id)
                issues.append(GraphIssue(
                    code="unknown_kind", message=error.message,
                    node_ids=[node.id], error=error,
                ))
        return issues

    def find_dangling_edges(self, graph: "Graph") -> list[GraphIssue]:
        """
        Find edges whose ports no longer exist on their kinds.

        Insertion rejects such edges, so they only appear after a kind was
        re-registered with different ports.
        """
        issues = []
        for edge in graph.edges:
            for node_id, port_id, outgoing in (
                (edge.source_node_id, edge.source_port, True),
                (edge.dest_node_id, edge.dest_port, False),
            ):
                kind_id = graph.nodes[node_id].kind_id
                if kind_id not in graph.registry:
                    continue
                definition = graph.registry.lookup(kind_id)
                port = definition.output_port(port_id) if outgoing else definition.input_port(port_id)
                if port is None:
                    error = PortNotFoundError(
                        f"Edge {edge!r} references missing port '{port_id}' "
                        f"on node '{node_id}' ({kind_id})",
                        node_id=node_id,
                    )
                    issues.append(GraphIssue(
                        code="dangling_edge", message=error.message,
                        node_ids=[node_id], edge=edge, error=error,
                    ))
        return issues

    def find_unbound_inputs(self, graph: "Graph") -> list[GraphIssue]:
        """
        Find data inputs with no incoming edge and no literal value.
        """
        issues = []
        for node in graph.nodes.values():
            if node.kind_id not in graph.registry:
                continue
            for port in graph.registry.lookup(node.kind_id).data_inputs():
                if graph.incoming_edge(node.id, port.id) is not None:
                    continue
                if port.id in node.literal_inputs:
                    continue
                error = MissingLiteralError(
                    f"Input '{port.id}' on node '{node.id}' has no edge and no literal",
                    node_id=node.id,
                )
                issues.append(GraphIssue(
                    code="unbound_input", message=error.message,
                    node_ids=[node.id], error=error,
                ))
        return issues

    def find_data_cycle(self, graph: "Graph") -> Optional[list[tuple[str, str]]]:
        """
        Find one cycle among data edges.

        Returns:
            The cycle as (node, input port) pairs in pull order, or None
        """
        # node -> [(input port, source node)]
        pulls: dict[str, list[tuple[str, str]]] = {node_id: [] for node_id in graph.nodes}
        for edge in graph.edges:
            if not graph.is_exec_edge(edge):
                pulls[edge.dest_node_id].append((edge.dest_port, edge.source_node_id))

        white, grey, black = 0, 1, 2
        color = {node_id: white for node_id in graph.nodes}

        for root in graph.nodes:
            if color[root] != white:
                continue
            # Iterative DFS: stack of (node, iterator over its pulls)
            path: list[tuple[str, str]] = []
            stack = [(root, iter(pulls[root]))]
            color[root] = grey
            while stack:
                node_id, children = stack[-1]
                step = next(children, None)
                if step is None:
                    color[node_id] = black
                    stack.pop()
                    if path:
                        path.pop()
                    continue
                port_id, source_id = step
                if color[source_id] == grey:
                    path.append((node_id, port_id))
                    start = next(
                        i for i, (n, _) in enumerate(path) if n == source_id
                    )
                    return path[start:]
                if color[source_id] == white:
                    path.append((node_id, port_id))
                    color[source_id] = grey
                    stack.append((source_id, iter(pulls[source_id])))
        return None
