"""
Basic block program example.

Demonstrates:
- Placing nodes from the builtin library
- Wiring control flow (exec edges) and data flow (value edges)
- Running a program and reading its log
"""

import asyncio

from blockflow import Engine


def build(engine: Engine) -> None:
    """On start: count from 1 to 5, logging each square, then say done."""
    start = engine.add_node("event.start")
    loop = engine.add_node("logic.for", {"from": 1, "to": 6})
    square = engine.add_node("math.mul")
    body = engine.add_node("debug.log")
    done = engine.add_node("debug.log", {"message": "done"})

    engine.connect(start.id, "exec", loop.id, "exec")
    engine.connect(loop.id, "loop", body.id, "exec")
    engine.connect(loop.id, "done", done.id, "exec")

    # Both factors read the loop index, which is fresh on every pass
    engine.connect(loop.id, "index", square.id, "a")
    engine.connect(loop.id, "index", square.id, "b")
    engine.connect(square.id, "value", body.id, "message")


async def main() -> None:
    engine = Engine()
    engine.observe(on_log=lambda level, message: print(f"[{level}] {message}"))
    build(engine)

    result = await engine.run()

    print(f"\nStatus: {result.status.value}")
    for trigger in result.triggers:
        print(f"  trigger {trigger.trigger_id}: {trigger.nodes_executed} nodes "
              f"in {trigger.duration_ms:.1f}ms")


if __name__ == "__main__":
    asyncio.run(main())
