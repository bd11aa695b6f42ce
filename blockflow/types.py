"""
Core type system and data structures for BlockFlow.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class _Missing:
    """Sentinel for ports that declare no default literal."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

EXEC_PORT = "exec"


class ValueType(str, Enum):
    """Type carried by a port."""

    EXEC = "exec"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class Direction(str, Enum):
    """Whether a port receives or produces values."""

    IN = "in"
    OUT = "out"


class Shape(str, Enum):
    """
    How a node kind participates in control flow.

    Statements have one exec input and at least one exec output, expressions
    are data-only and have no exec ports, events have exec outputs only and
    act as entry points.
    """

    STATEMENT = "statement"
    EXPRESSION = "expression"
    EVENT = "event"


class RunStatus(str, Enum):
    """Status of a root trigger or a run."""

    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class PortSpec:
    """Declaration of one input or output port on a node kind."""

    id: str
    direction: Direction = Direction.IN
    value_type: ValueType = ValueType.ANY
    default_literal: Any = MISSING
    description: Optional[str] = None

    def __post_init__(self) -> None:
        """Normalise enum fields given as plain strings."""
        self.direction = Direction(self.direction)
        self.value_type = ValueType(self.value_type)
        if self.is_exec and self.default_literal is not MISSING:
            raise ValueError(f"Exec port '{self.id}' cannot declare a default literal")

    @property
    def is_exec(self) -> bool:
        """Check if this port carries control flow rather than a value."""
        return self.value_type == ValueType.EXEC

    @property
    def has_default(self) -> bool:
        return self.default_literal is not MISSING

    @classmethod
    def exec_in(cls, port_id: str = EXEC_PORT) -> "PortSpec":
        return cls(port_id, Direction.IN, ValueType.EXEC)

    @classmethod
    def exec_out(cls, port_id: str = EXEC_PORT) -> "PortSpec":
        return cls(port_id, Direction.OUT, ValueType.EXEC)

    def to_dict(self) -> dict[str, Any]:
        """Export to dictionary for UI consumption."""
        return {
            "id": self.id,
            "direction": self.direction.value,
            "value_type": self.value_type.value,
            "default": None if self.default_literal is MISSING else self.default_literal,
            "has_default": self.has_default,
            "description": self.description,
        }


@dataclass(frozen=True)
class Edge:
    """A connection from an output port to an input port."""

    source_node_id: str
    source_port: str
    dest_node_id: str
    dest_port: str

    @property
    def destination(self) -> tuple[str, str]:
        return (self.dest_node_id, self.dest_port)

    def touches(self, node_id: str) -> bool:
        """Check if either endpoint is the given node."""
        return node_id in (self.source_node_id, self.dest_node_id)

    def to_dict(self) -> dict[str, str]:
        return {
            "source_node_id": self.source_node_id,
            "source_port": self.source_port,
            "dest_node_id": self.dest_node_id,
            "dest_port": self.dest_port,
        }

    def __repr__(self) -> str:
        return (
            f"Edge({self.source_node_id}.{self.source_port} "
            f"-> {self.dest_node_id}.{self.dest_port})"
        )


_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0", ""}


def coerce_value(value: Any, value_type: ValueType) -> Any:
    """
    Convert a literal to the representation a port type expects.

    Literals typed into the editor arrive as text, so ``"3"`` on a number
    port becomes ``3`` and ``"false"`` on a boolean port becomes ``False``.
    Values that cannot be converted are returned unchanged; whether that is
    an error is up to the behavior that consumes them.

    Args:
        value: Raw literal value
        value_type: Declared type of the port

    Returns:
        The converted value, or ``value`` itself if no conversion applies
    """
    if value_type in (ValueType.ANY, ValueType.EXEC):
        return value

    if value_type == ValueType.NUMBER:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                pass
            try:
                return float(text)
            except ValueError:
                return value
        return value

    if value_type == ValueType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            word = value.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        return value

    if value_type == ValueType.STRING:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    container = dict if value_type == ValueType.OBJECT else list
    if isinstance(value, container):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        if isinstance(parsed, container):
            return parsed
    if value_type == ValueType.ARRAY and isinstance(value, tuple):
        return list(value)
    return value
