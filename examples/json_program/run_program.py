#!/usr/bin/env python3
"""
Execute a block program saved as JSON.

The editor saves programs as GraphDocument JSON; this script loads one,
lints it, runs it and writes the resulting variables back out.

Usage:
    python run_program.py
    python run_program.py program.json
"""

import asyncio
import sys
from pathlib import Path

from blockflow import Engine, GraphDocument, GraphValidator
from blockflow.events import Event, EventKind


def monitor(event: Event) -> None:
    if event.kind == EventKind.LOG:
        print(f"  [{event.meta['level']}] {event.meta['message']}")
    elif event.kind == EventKind.NODE_ERRORED:
        print(f"  x {event.node_id}: {event.meta['error_message']}")


async def main(path: Path) -> int:
    document = GraphDocument.from_json(path.read_text())

    engine = Engine()
    engine.subscribe(monitor)
    engine.load(document)

    issues = GraphValidator(engine.config.start_kind).find_issues(engine.graph)
    for issue in issues:
        print(f"! {issue.code}: {issue.message}")
    if issues:
        return 1

    print(f"Running {path.name} ({len(document.nodes)} nodes)")
    result = await engine.run()
    print(f"Status: {result.status.value}")
    print(engine.snapshot().to_json())
    return 0 if result.success else 1


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).parent / "program.json"
    sys.exit(asyncio.run(main(target)))
