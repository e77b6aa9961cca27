"""Example: route one request through the QA team in qa_agents.yaml.

Runs with echo agents by default; pass --live to let Claude do the work.
"""

import asyncio
import logging
import sys
from pathlib import Path

from handoff.execution import route_request

CONFIG = Path(__file__).with_name("qa_agents.yaml")


async def main():
    live = "--live" in sys.argv
    text = next((a for a in sys.argv[1:] if not a.startswith("--")), None)
    text = text or "analyze coverage, then generate tests for the gaps"

    print(f"--- Routing: {text!r} ({'live' if live else 'mock'}) ---\n")

    result = await route_request(
        text,
        CONFIG,
        on_progress=lambda s: print(f"  [{s['status']}] {s['completed_steps']}/{s['total_steps']}"),
        mock=not live,
        target_files=("src/checkout.py",),
    )

    print(f"\nOutcome: {result.outcome.value}")
    for agent_id, deliverables in result.deliverables.items():
        print(f"  {agent_id}: {deliverables.get('summary', '')}")
    if result.failure:
        print(f"  failure: {result.failure.message}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
