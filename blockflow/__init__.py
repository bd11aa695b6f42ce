"""
BlockFlow: embeddable interpreter for visual block programs.
"""

__version__ = "0.1.0"

from blockflow.config import EngineConfig
from blockflow.context import BehaviorContext
from blockflow.document import EdgeRecord, GraphDocument, NodeRecord
from blockflow.engine import Engine, RunResult, TriggerResult
from blockflow.errors import (
    BehaviorError,
    BlockFlowError,
    ConfigError,
    CyclicDependencyError,
    ExecutionError,
    GraphError,
    MissingLiteralError,
    NodeNotFoundError,
    NoEntryPointError,
    PortNotFoundError,
    PullDepthError,
    SandboxError,
    TypeMismatchError,
    UnknownKindError,
)
from blockflow.events import Event, EventEmitter, EventKind, Observer
from blockflow.graph import Graph
from blockflow.library import default_registry, register_builtins
from blockflow.node import NodeInstance, node_kind
from blockflow.registry import NodeKindDefinition, NodeRegistry
from blockflow.sandbox import SafeExpression
from blockflow.types import (
    Direction,
    Edge,
    PortSpec,
    RunStatus,
    Shape,
    ValueType,
)
from blockflow.validation import GraphIssue, GraphValidator
from blockflow.variables import VariableStore

__all__ = [
    # Core
    "Engine",
    "EngineConfig",
    "RunResult",
    "TriggerResult",
    "Graph",
    "NodeInstance",
    "BehaviorContext",
    "VariableStore",
    # Registry
    "NodeRegistry",
    "NodeKindDefinition",
    "node_kind",
    "register_builtins",
    "default_registry",
    "SafeExpression",
    # Types
    "PortSpec",
    "Edge",
    "ValueType",
    "Direction",
    "Shape",
    "RunStatus",
    # Validation and persistence
    "GraphValidator",
    "GraphIssue",
    "GraphDocument",
    "NodeRecord",
    "EdgeRecord",
    # Events
    "Event",
    "EventKind",
    "EventEmitter",
    "Observer",
    # Errors
    "BlockFlowError",
    "ConfigError",
    "GraphError",
    "UnknownKindError",
    "NodeNotFoundError",
    "PortNotFoundError",
    "TypeMismatchError",
    "ExecutionError",
    "NoEntryPointError",
    "CyclicDependencyError",
    "PullDepthError",
    "MissingLiteralError",
    "BehaviorError",
    "SandboxError",
]
