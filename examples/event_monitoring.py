"""
Event monitoring example.

Demonstrates:
- Subscribing to engine events
- An interval node starting a new root trigger on every tick
- External events delivered to listener nodes
- Stopping a running program
"""

import asyncio

from blockflow import Engine
from blockflow.events import Event, EventKind


class ExecutionMonitor:
    """Collects node timings and errors from the event stream."""

    def __init__(self) -> None:
        self.triggers = 0
        self.node_timings: dict[str, list[float]] = {}
        self.errors: list[str] = []

    def handle_event(self, event: Event) -> None:
        if event.kind == EventKind.TRIGGER_STARTED:
            self.triggers += 1
            print(f"-> trigger {event.trigger_id} ({event.meta['origin']})")

        elif event.kind == EventKind.NODE_FINISHED:
            duration = event.meta.get("duration_ms", 0)
            self.node_timings.setdefault(event.node_id, []).append(duration)

        elif event.kind == EventKind.NODE_ERRORED:
            self.errors.append(f"{event.node_id}: {event.meta['error_message']}")
            print(f"   node {event.node_id} failed: {event.meta['error_message']}")

        elif event.kind == EventKind.LOG:
            print(f"   [{event.meta['level']}] {event.meta['message']}")

        elif event.kind == EventKind.RUN_STOPPED:
            print(f"stopped, {event.meta['registrations_cancelled']} timers cancelled")

    def print_summary(self) -> None:
        print("\nSummary")
        print(f"  triggers: {self.triggers}")
        for node_id, timings in self.node_timings.items():
            print(f"  {node_id}: {len(timings)} runs, "
                  f"{sum(timings) / len(timings):.2f}ms avg")
        print(f"  errors: {len(self.errors)}")


async def main() -> None:
    engine = Engine(min_interval_ms=50)
    monitor = ExecutionMonitor()
    engine.subscribe(monitor.handle_event)

    engine.add_node("event.start", node_id="start")

    ticker = engine.add_node("time.interval", {"ms": 200}, node_id="ticker")
    tick_log = engine.add_node("debug.log", node_id="tick_log")
    engine.connect(ticker.id, "exec", tick_log.id, "exec")
    engine.connect(ticker.id, "tick", tick_log.id, "message")

    listener = engine.add_node("event.listen", {"name": "order"}, node_id="orders")
    total = engine.add_node("script.eval", {"code": "x['qty'] * x['price']"}, node_id="total")
    order_log = engine.add_node("debug.log", node_id="order_log")
    engine.connect(listener.id, "exec", order_log.id, "exec")
    engine.connect(listener.id, "payload", total.id, "x")
    engine.connect(total.id, "value", order_log.id, "message")

    await engine.run()

    engine.dispatch_event("order", {"qty": 3, "price": 2.5})
    engine.dispatch_event("order", {"qty": 3})
    await asyncio.sleep(0.7)

    engine.stop()
    await engine.join()
    monitor.print_summary()


if __name__ == "__main__":
    asyncio.run(main())
