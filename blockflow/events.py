"""
Event system for observable graph execution.

Collaborators (editor surfaces, debuggers, log panes) subscribe to an
``EventEmitter`` and receive one ``Event`` per notable step. ``Observer``
adapts the event stream to the four callbacks an editor usually needs.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Run, trigger and node lifecycle steps, plus program log lines."""

    RUN_STARTED = "run_started"
    TRIGGER_STARTED = "trigger_started"
    NODE_STARTED = "node_started"
    NODE_FINISHED = "node_finished"
    NODE_ERRORED = "node_errored"
    LOG = "log"
    TRIGGER_FINISHED = "trigger_finished"
    RUN_STOPPED = "run_stopped"


@dataclass
class Event:
    """One notable step of execution, as seen by observers."""

    kind: EventKind
    trigger_id: Optional[str] = None
    node_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form for log panes and remote debuggers."""
        return {
            "kind": self.kind.value,
            "trigger_id": self.trigger_id,
            "node_id": self.node_id,
            "timestamp": self.timestamp.isoformat(),
            "meta": self.meta,
        }


@dataclass
class RunStartedEvent(Event):
    """Emitted when ``Engine.run`` begins."""

    kind: EventKind = field(default=EventKind.RUN_STARTED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("entry_points", [])


@dataclass
class TriggerStartedEvent(Event):
    """Emitted when a root trigger begins."""

    kind: EventKind = field(default=EventKind.TRIGGER_STARTED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("origin", "")


@dataclass
class NodeStartedEvent(Event):
    """Emitted when a node behavior is invoked."""

    kind: EventKind = field(default=EventKind.NODE_STARTED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("kind_id", "")
        self.meta.setdefault("mode", "exec")


@dataclass
class NodeFinishedEvent(Event):
    """Emitted when a node behavior completes."""

    kind: EventKind = field(default=EventKind.NODE_FINISHED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("kind_id", "")
        self.meta.setdefault("duration_ms", 0)
        self.meta.setdefault("outputs_present", [])


@dataclass
class NodeErroredEvent(Event):
    """Emitted when a node behavior fails."""

    kind: EventKind = field(default=EventKind.NODE_ERRORED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("error_class", "")
        self.meta.setdefault("error_message", "")

    @property
    def message(self) -> str:
        return self.meta["error_message"]


@dataclass
class LogEvent(Event):
    """Emitted by nodes that write to the program log."""

    kind: EventKind = field(default=EventKind.LOG, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("level", "info")
        self.meta.setdefault("message", "")

    @property
    def level(self) -> str:
        return self.meta["level"]

    @property
    def message(self) -> Any:
        return self.meta["message"]


@dataclass
class TriggerFinishedEvent(Event):
    """Emitted when a root trigger completes (success or failure)."""

    kind: EventKind = field(default=EventKind.TRIGGER_FINISHED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("status", "ok")
        self.meta.setdefault("duration_ms", 0)
        self.meta.setdefault("nodes_executed", 0)


@dataclass
class RunStoppedEvent(Event):
    """Emitted when ``Engine.stop`` tears execution down."""

    kind: EventKind = field(default=EventKind.RUN_STOPPED, init=False)

    def __post_init__(self) -> None:
        self.meta.setdefault("registrations_cancelled", 0)


class EventEmitter:
    """
    Fans engine events out to editor surfaces.

    Subscribing is safe from any thread. Events are delivered synchronously
    on the emitting thread, which for engine events is the event loop.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[Event], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        """Add a callback for every event; adding one twice has no effect."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Event], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def emit(self, event: Event) -> None:
        """
        Deliver ``event`` to each subscriber in subscription order.

        A subscriber that raises is logged and skipped; observers never
        interrupt execution.
        """
        with self._lock:
            snapshot = list(self._subscribers)

        # Handlers may (un)subscribe while running
        for callback in snapshot:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber %r failed on %s", callback, event.kind.value)

    def clear(self) -> None:
        with self._lock:
            self._subscribers = []


@dataclass
class Observer:
    """
    Callback-style view of the event stream.

    Example:
        >>> observer = Observer(on_log=lambda level, msg: print(level, msg))
        >>> engine.emitter.subscribe(observer)
    """

    on_node_started: Optional[Callable[[str], None]] = None
    on_node_finished: Optional[Callable[[str], None]] = None
    on_node_errored: Optional[Callable[[str, str], None]] = None
    on_log: Optional[Callable[[str, Any], None]] = None

    def __call__(self, event: Event) -> None:
        if event.kind == EventKind.NODE_STARTED and self.on_node_started:
            self.on_node_started(event.node_id)
        elif event.kind == EventKind.NODE_FINISHED and self.on_node_finished:
            self.on_node_finished(event.node_id)
        elif event.kind == EventKind.NODE_ERRORED and self.on_node_errored:
            self.on_node_errored(event.node_id, event.meta.get("error_message", ""))
        elif event.kind == EventKind.LOG and self.on_log:
            self.on_log(event.meta.get("level", "info"), event.meta.get("message"))
