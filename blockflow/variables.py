"""
Global variable store shared by every root trigger.

Writes are last-writer-wins with no locking. Two triggers interleaving at
suspension points may each observe the other's writes or not, depending on
the order in which they resume. Nodes that need read-modify-write on one key
can serialise through ``exclusive``.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional


class VariableStore:
    """Named values set and read by variable nodes."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._locks: dict[str, asyncio.Lock] = {}
        self.version = 0
        # Store version at which each key last changed, and at the last bulk reset
        self._changed: dict[str, int] = {}
        self._reset = 0

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def version_of(self, name: str) -> int:
        """Store version at which ``name`` last changed."""
        return max(self._changed.get(name, 0), self._reset)

    def _touch(self, name: str) -> None:
        self.version += 1
        self._changed[name] = self.version

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value
        self._touch(name)

    def delete(self, name: str) -> None:
        if name in self._values:
            del self._values[name]
            self._touch(name)

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of all values, for persistence or inspection."""
        return dict(self._values)

    def load(self, values: dict[str, Any]) -> None:
        """Replace every value with the given mapping."""
        self._values = dict(values)
        self.version += 1
        self._reset = self.version

    def clear(self) -> None:
        self._values.clear()
        self.version += 1
        self._reset = self.version

    @asynccontextmanager
    async def exclusive(self, name: str) -> AsyncIterator["VariableStore"]:
        """
        Hold the writer lock for one key.

        Only writers that also go through ``exclusive`` are serialised; plain
        ``set`` calls keep last-writer-wins semantics.

        Example:
            >>> async with store.exclusive("score"):
            ...     store.set("score", store.get("score", 0) + 1)
        """
        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            yield self
