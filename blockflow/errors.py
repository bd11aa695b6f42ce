"""
Exception hierarchy for the BlockFlow graph engine.

Structural errors (``GraphError`` and its subclasses) are raised synchronously
by graph mutation calls. Execution errors (``ExecutionError`` and its
subclasses) are raised while a root trigger runs; the engine reports them to
observers and terminates only the trigger that raised them.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class BlockFlowError(Exception):
    """Base exception for all BlockFlow errors."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        trigger_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.trigger_id = trigger_id
        self.metadata = metadata or {}
        self.reported = False
        self.timestamp = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        parts = [f"message={self.message!r}"]
        if self.node_id:
            parts.append(f"node_id={self.node_id!r}")
        if self.trigger_id:
            parts.append(f"trigger_id={self.trigger_id!r}")
        return f"{self.__class__.__name__}({', '.join(parts)})"


class ConfigError(BlockFlowError):
    """Raised when engine configuration is invalid."""

    pass


# Structural errors


class GraphError(BlockFlowError):
    """Raised when a graph mutation would break a structural invariant."""

    pass


class UnknownKindError(GraphError):
    """Raised when a node kind identifier is not registered."""

    def __init__(self, kind_id: str, **kwargs: Any) -> None:
        super().__init__(f"Unknown node kind: '{kind_id}'", **kwargs)
        self.kind_id = kind_id


class NodeNotFoundError(GraphError):
    """Raised when a mutation names a node that is not in the graph."""

    pass


class PortNotFoundError(GraphError):
    """Raised when an edge or literal names a port the kind does not declare."""

    pass


class TypeMismatchError(GraphError):
    """Raised when two connected ports carry incompatible value types."""

    pass


# Execution errors


class ExecutionError(BlockFlowError):
    """Raised when executing a root trigger fails."""

    pass


class NoEntryPointError(ExecutionError):
    """Raised when a run is requested but the graph has no start nodes."""

    pass


class CyclicDependencyError(ExecutionError):
    """Raised when data resolution re-enters a port already being resolved."""

    def __init__(self, path: list[tuple[str, str]], **kwargs: Any) -> None:
        chain = " -> ".join(f"{node}.{port}" for node, port in path)
        super().__init__(f"Cyclic data dependency: {chain}", **kwargs)
        self.path = path


class PullDepthError(ExecutionError):
    """Raised when data resolution nests deeper than the configured bound."""

    pass


class MissingLiteralError(ExecutionError):
    """Raised when a pulled input has no edge, no literal and no default."""

    pass


class BehaviorError(ExecutionError):
    """Wraps an exception raised inside a node behavior."""

    def __init__(
        self,
        message: str,
        original: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.original = original


class SandboxError(ExecutionError):
    """Raised when a sandboxed expression is rejected or fails to evaluate."""

    pass
