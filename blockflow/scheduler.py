"""
Timer and event bridge between node behaviors and the asyncio loop.

Behaviors such as intervals and listeners do not continue control flow
themselves; they register a callback here and return. Each time the callback
fires, the engine starts a new root trigger from the node's continuation.
Every registration is owned by a node so ``Engine.stop`` can cancel all of
them, per node or at once.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Registration:
    """Handle for one timer, interval or event listener."""

    owner: str
    kind: str
    callback: Callable[..., Any]
    interval: Optional[float] = None
    event_name: Optional[str] = None
    fired: int = 0
    cancelled: bool = False
    _handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    _scheduler: Optional["Scheduler"] = field(default=None, repr=False)

    def cancel(self) -> None:
        """Stop this registration; further firings are dropped."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._scheduler is not None:
            self._scheduler._forget(self)


class Scheduler:
    """
    Owner-tracked timers, intervals, listeners and interruptible sleeps.
    """

    def __init__(self, min_interval_ms: float = 10.0) -> None:
        self.min_interval = min_interval_ms / 1000.0
        self._by_owner: dict[str, list[Registration]] = {}
        self._listeners: dict[str, list[Registration]] = {}
        self._sleepers: set[asyncio.Future] = set()

    @property
    def active_count(self) -> int:
        return sum(len(regs) for regs in self._by_owner.values())

    def registrations(self, owner: Optional[str] = None) -> list[Registration]:
        if owner is not None:
            return list(self._by_owner.get(owner, []))
        return [reg for regs in self._by_owner.values() for reg in regs]

    def _track(self, registration: Registration) -> Registration:
        registration._scheduler = self
        self._by_owner.setdefault(registration.owner, []).append(registration)
        return registration

    def _forget(self, registration: Registration) -> None:
        owned = self._by_owner.get(registration.owner, [])
        if registration in owned:
            owned.remove(registration)
        if not owned:
            self._by_owner.pop(registration.owner, None)
        if registration.event_name is not None:
            listeners = self._listeners.get(registration.event_name, [])
            if registration in listeners:
                listeners.remove(registration)
            if not listeners:
                self._listeners.pop(registration.event_name, None)

    def _run_callback(self, registration: Registration, *args: Any) -> None:
        registration.fired += 1
        try:
            registration.callback(*args)
        except Exception:
            logger.exception(
                "Scheduler callback for '%s' (%s) failed", registration.owner, registration.kind
            )

    def call_later(
        self,
        owner: str,
        delay: float,
        callback: Callable[[], Any],
    ) -> Registration:
        """
        Call ``callback`` once after ``delay`` seconds.

        Args:
            owner: Node id owning the registration
            delay: Delay in seconds
            callback: Zero-argument callable
        """
        loop = asyncio.get_running_loop()
        registration = self._track(Registration(owner=owner, kind="timer", callback=callback))

        def fire() -> None:
            if registration.cancelled:
                return
            self._forget(registration)
            self._run_callback(registration)

        registration._handle = loop.call_later(max(delay, 0.0), fire)
        return registration

    def every(
        self,
        owner: str,
        interval: float,
        callback: Callable[[], Any],
    ) -> Registration:
        """
        Call ``callback`` every ``interval`` seconds until cancelled.

        The period is clamped to the configured minimum so a zero interval
        cannot starve the loop.
        """
        loop = asyncio.get_running_loop()
        period = max(interval, self.min_interval)
        registration = self._track(Registration(
            owner=owner, kind="interval", callback=callback, interval=period,
        ))
        next_at = loop.time() + period

        def fire() -> None:
            nonlocal next_at
            if registration.cancelled:
                return
            next_at += period
            # Reschedule before running so a slow callback does not drift the timer
            registration._handle = loop.call_at(max(next_at, loop.time()), fire)
            self._run_callback(registration)

        registration._handle = loop.call_at(next_at, fire)
        return registration

    def listen(
        self,
        owner: str,
        event_name: str,
        callback: Callable[[Any], Any],
    ) -> Registration:
        """
        Call ``callback(payload)`` each time ``event_name`` is dispatched.
        """
        registration = self._track(Registration(
            owner=owner, kind="listener", callback=callback, event_name=event_name,
        ))
        self._listeners.setdefault(event_name, []).append(registration)
        return registration

    def dispatch(self, event_name: str, payload: Any = None) -> int:
        """
        Deliver an external event to its listeners.

        Returns:
            Number of listeners called
        """
        listeners = list(self._listeners.get(event_name, []))
        for registration in listeners:
            if not registration.cancelled:
                self._run_callback(registration, payload)
        return len(listeners)

    async def sleep(self, seconds: float) -> bool:
        """
        Suspend the calling behavior.

        Returns:
            True if the full delay elapsed, False if woken early by ``wake_all``
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        handle = loop.call_later(
            max(seconds, 0.0), lambda: future.done() or future.set_result(True)
        )
        self._sleepers.add(future)
        try:
            return await future
        finally:
            handle.cancel()
            self._sleepers.discard(future)

    def wake_all(self) -> int:
        """Resolve every pending sleep early; each returns False."""
        woken = 0
        for future in list(self._sleepers):
            if not future.done():
                future.set_result(False)
                woken += 1
        return woken

    def cancel_owner(self, owner: str) -> int:
        """Cancel every registration of one node; returns how many."""
        owned = list(self._by_owner.get(owner, []))
        for registration in owned:
            registration.cancel()
        return len(owned)

    def cancel_all(self) -> int:
        """Cancel every registration; returns how many."""
        count = 0
        for owner in list(self._by_owner):
            count += self.cancel_owner(owner)
        return count
