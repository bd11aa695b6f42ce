"""
Persisted graph representation.

External serializers (editor save files, clipboard, remote sync) exchange
graphs as a ``GraphDocument``: ordered node records, ordered edge records and
a snapshot of the global variable store. The engine itself never touches the
file system.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from blockflow.types import Edge

DOCUMENT_VERSION = "1.0"


class NodeRecord(BaseModel):
    """One node of a persisted graph."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    kind_id: str = Field(min_length=1)
    literal_inputs: dict[str, Any] = Field(default_factory=dict)


class EdgeRecord(BaseModel):
    """One edge of a persisted graph."""

    model_config = ConfigDict(extra="ignore")

    source_node_id: str = Field(min_length=1)
    source_port: str = Field(min_length=1)
    dest_node_id: str = Field(min_length=1)
    dest_port: str = Field(min_length=1)

    @classmethod
    def from_edge(cls, edge: Edge) -> "EdgeRecord":
        return cls(**edge.to_dict())

    def to_edge(self) -> Edge:
        return Edge(self.source_node_id, self.source_port, self.dest_node_id, self.dest_port)


class GraphDocument(BaseModel):
    """
    A whole graph plus the variable store snapshot.

    Example:
        >>> document = engine.snapshot()
        >>> text = document.to_json()
        >>> engine.load(GraphDocument.from_json(text))
    """

    model_config = ConfigDict(extra="ignore")

    version: str = DOCUMENT_VERSION
    nodes: list[NodeRecord] = Field(default_factory=list)
    edges: list[EdgeRecord] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "GraphDocument":
        """
        Parse and validate a document.

        Raises:
            pydantic.ValidationError: If the text is not a valid document
        """
        return cls.model_validate_json(text)
