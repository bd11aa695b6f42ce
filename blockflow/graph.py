"""
Graph store: node instances and edges, with structural invariants.

Every mutation is checked against the registry when it happens, so a graph
held by this store never contains an edge to a missing node or port, and
never has two edges writing into the same data input.
"""

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from blockflow.errors import (
    GraphError,
    NodeNotFoundError,
    PortNotFoundError,
    TypeMismatchError,
)
from blockflow.node import NodeInstance
from blockflow.registry import NodeKindDefinition, NodeRegistry
from blockflow.types import Edge
from blockflow.validation import DefaultCompatibilityMatcher, PortCompatibilityMatcher

if TYPE_CHECKING:
    from blockflow.document import GraphDocument

logger = logging.getLogger(__name__)


def new_node_id() -> str:
    return f"n_{uuid.uuid4().hex[:9]}"


class Graph:
    """
    Node instances and edges keyed by node id.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        compatibility_matcher: Optional[PortCompatibilityMatcher] = None,
    ) -> None:
        """
        Initialize an empty graph.

        Args:
            registry: Registry used to check kinds and ports
            compatibility_matcher: Custom port compatibility checker
        """
        self.registry = registry
        self.nodes: dict[str, NodeInstance] = {}
        self.edges: list[Edge] = []
        self._matcher = compatibility_matcher or DefaultCompatibilityMatcher()

    def _require_node(self, node_id: str) -> NodeInstance:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(f"Node '{node_id}' not found", node_id=node_id) from None

    def definition_of(self, node_id: str) -> NodeKindDefinition:
        """Latest kind definition of a node."""
        return self.registry.lookup(self._require_node(node_id).kind_id)

    def add_node(
        self,
        kind_id: str,
        literal_overrides: Optional[dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> NodeInstance:
        """
        Create a node of a registered kind.

        Args:
            kind_id: Registered kind identifier
            literal_overrides: Literal values replacing the port defaults
            node_id: Explicit id, generated when omitted

        Returns:
            The new instance

        Raises:
            UnknownKindError: If the kind is not registered
            PortNotFoundError: If an override names no data input of the kind
            GraphError: If node_id already exists
        """
        definition = self.registry.lookup(kind_id)
        node_id = node_id or new_node_id()
        if node_id in self.nodes:
            raise GraphError(f"Node with id '{node_id}' already exists", node_id=node_id)

        literals = definition.default_literals()
        for port_id, value in (literal_overrides or {}).items():
            port = definition.input_port(port_id)
            if port is None or port.is_exec:
                raise PortNotFoundError(
                    f"Node kind '{kind_id}' has no data input '{port_id}'",
                    node_id=node_id,
                )
            literals[port_id] = value

        node = NodeInstance(id=node_id, kind_id=kind_id, literal_inputs=literals)
        self.nodes[node_id] = node
        logger.debug("Added node %s (%s)", node_id, kind_id)
        return node

    def remove_node(self, node_id: str) -> NodeInstance:
        """
        Remove a node and every edge touching it.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        node = self._require_node(node_id)
        self.edges = [edge for edge in self.edges if not edge.touches(node_id)]
        del self.nodes[node_id]
        logger.debug("Removed node %s", node_id)
        return node

    def add_edge(self, edge: Edge) -> Optional[Edge]:
        """
        Connect an output port to an input port.

        A data input accepts a single writer: an edge already ending at the
        same (node, port) is evicted. Exec inputs accept any number of edges.

        Args:
            edge: Edge to insert

        Returns:
            The evicted edge, if any

        Raises:
            NodeNotFoundError: If either endpoint node does not exist
            PortNotFoundError: If either endpoint port does not exist
            TypeMismatchError: If the port types cannot be connected
        """
        src_def = self.definition_of(edge.source_node_id)
        dst_def = self.definition_of(edge.dest_node_id)

        src_port = src_def.output_port(edge.source_port)
        if src_port is None:
            raise PortNotFoundError(
                f"Node '{edge.source_node_id}' ({src_def.kind_id}) has no output "
                f"'{edge.source_port}'",
                node_id=edge.source_node_id,
            )
        dst_port = dst_def.input_port(edge.dest_port)
        if dst_port is None:
            raise PortNotFoundError(
                f"Node '{edge.dest_node_id}' ({dst_def.kind_id}) has no input "
                f"'{edge.dest_port}'",
                node_id=edge.dest_node_id,
            )

        if not self._matcher.are_compatible(src_port, dst_port):
            raise TypeMismatchError(
                f"Incompatible port types: {edge.source_node_id}.{edge.source_port} "
                f"({src_port.value_type.value}) -> {edge.dest_node_id}.{edge.dest_port} "
                f"({dst_port.value_type.value})",
                node_id=edge.dest_node_id,
            )

        if edge in self.edges:
            return None

        evicted = None
        if not dst_port.is_exec:
            evicted = self.incoming_edge(edge.dest_node_id, edge.dest_port)
            if evicted is not None:
                self.edges.remove(evicted)
                logger.debug("Evicted %r in favour of %r", evicted, edge)

        self.edges.append(edge)
        return evicted

    def connect(
        self,
        source_node_id: str,
        source_port: str,
        dest_node_id: str,
        dest_port: str,
    ) -> Edge:
        """Shorthand for ``add_edge`` taking the four endpoint fields."""
        edge = Edge(source_node_id, source_port, dest_node_id, dest_port)
        self.add_edge(edge)
        return edge

    def remove_edge(self, edge: Edge) -> None:
        """Remove an edge; no-op if it is absent."""
        if edge in self.edges:
            self.edges.remove(edge)

    def set_literal_input(self, node_id: str, port_id: str, value: Any) -> None:
        """
        Set the literal used when an input has no incoming edge.

        Raises:
            NodeNotFoundError: If the node does not exist
            PortNotFoundError: If the kind has no such data input
        """
        node = self._require_node(node_id)
        port = self.definition_of(node_id).input_port(port_id)
        if port is None or port.is_exec:
            raise PortNotFoundError(
                f"Node '{node_id}' ({node.kind_id}) has no data input '{port_id}'",
                node_id=node_id,
            )
        node.literal_inputs[port_id] = value

    def incoming_edge(self, node_id: str, port_id: str) -> Optional[Edge]:
        """The single edge writing into a data input, if any."""
        for edge in self.edges:
            if edge.dest_node_id == node_id and edge.dest_port == port_id:
                return edge
        return None

    def outgoing_edges(self, node_id: str, port_id: Optional[str] = None) -> list[Edge]:
        """
        Edges leaving a node, optionally from one port, in insertion order.
        """
        return [
            edge for edge in self.edges
            if edge.source_node_id == node_id
            and (port_id is None or edge.source_port == port_id)
        ]

    def is_exec_edge(self, edge: Edge) -> bool:
        kind_id = self.nodes[edge.source_node_id].kind_id
        if kind_id not in self.registry:
            return False
        port = self.registry.lookup(kind_id).output_port(edge.source_port)
        return port is not None and port.is_exec

    def nodes_of_kind(self, kind_id: str) -> list[NodeInstance]:
        """Instances of a kind, in insertion order."""
        return [node for node in self.nodes.values() if node.kind_id == kind_id]

    def to_document(self, variables: Optional[dict[str, Any]] = None) -> "GraphDocument":
        """
        Export the graph to its persisted representation.

        Args:
            variables: Global variable store snapshot to include
        """
        from blockflow.document import EdgeRecord, GraphDocument, NodeRecord

        return GraphDocument(
            nodes=[
                NodeRecord(id=node.id, kind_id=node.kind_id,
                           literal_inputs=dict(node.literal_inputs))
                for node in self.nodes.values()
            ],
            edges=[EdgeRecord.from_edge(edge) for edge in self.edges],
            variables=dict(variables or {}),
        )

    @classmethod
    def from_document(
        cls,
        document: "GraphDocument",
        registry: NodeRegistry,
        compatibility_matcher: Optional[PortCompatibilityMatcher] = None,
    ) -> "Graph":
        """
        Build a graph from its persisted representation.

        Nodes and edges go through the normal mutation calls, so a document
        referencing unknown kinds or ports fails the same way an editor would.

        Raises:
            UnknownKindError, PortNotFoundError, TypeMismatchError, GraphError
        """
        graph = cls(registry, compatibility_matcher)
        for record in document.nodes:
            node = graph.add_node(record.kind_id, node_id=record.id)
            # Literals for ports a newer kind dropped are kept verbatim
            node.literal_inputs.update(record.literal_inputs)
        for record in document.edges:
            graph.add_edge(record.to_edge())
        return graph
