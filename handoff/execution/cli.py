"""CLI entry point for routing requests through the handoff engine.

Usage:
  python -m handoff.execution validate <config>
  python -m handoff.execution plan <config> "<request>"
  python -m handoff.execution run <config> "<request>" [--mock] [--model sonnet] [-v]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Task routing and handoff CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine transitions")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Load and check a configuration")
    validate_parser.add_argument("config", help="Path to the YAML configuration")

    plan_parser = subparsers.add_parser("plan", help="Show the execution plan for a request")
    plan_parser.add_argument("config", help="Path to the YAML configuration")
    plan_parser.add_argument("request", help="Request text")

    run_parser = subparsers.add_parser("run", help="Route and execute a request")
    run_parser.add_argument("config", help="Path to the YAML configuration")
    run_parser.add_argument("request", help="Request text")
    run_parser.add_argument("--mock", action="store_true", help="Use echo agents (skip real execution)")
    run_parser.add_argument("--model", default="sonnet", help="Claude model (default: sonnet)")
    run_parser.add_argument(
        "--priority", choices=["normal", "high", "urgent"], default="normal", help="Request priority",
    )
    run_parser.add_argument(
        "--file", dest="files", action="append", default=[], help="Target file (repeatable)",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "validate":
        _validate_command(args)
    elif args.command == "plan":
        _plan_command(args)
    elif args.command == "run":
        asyncio.run(_run_command(args))


def _load(path: str):
    from handoff.execution.config import load_settings
    from handoff.workflow.exceptions import RegistryLoadError

    try:
        return load_settings(path)
    except RegistryLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _validate_command(args) -> None:
    settings = _load(args.config)
    print(f"Configuration OK: {len(settings.registry)} agents, {len(settings.classifier.rules)} rules")
    if settings.classifier.fallback_agent:
        print(f"Fallback agent: {settings.classifier.fallback_agent}")
    for descriptor in settings.registry.descriptors():
        targets = ", ".join(e.to_agent for e in descriptor.handoffs) or "-"
        print(f"  {descriptor.id} ({descriptor.autonomy.value}) -> {targets}")


def _plan_command(args) -> None:
    from handoff.execution.convenience import create_orchestrator
    from handoff.workflow.exceptions import ClassificationAmbiguous
    from handoff.workflow.models import Request

    settings = _load(args.config)
    orchestrator = create_orchestrator(settings, mock=True)
    try:
        candidates, plan = orchestrator.plan(Request(text=args.request))
    except ClassificationAmbiguous as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Categories: {', '.join(candidates.categories)}")
    if plan.ambiguous:
        print("Ambiguous request; routed to the fallback agent")
    for step in plan.steps:
        deps = ", ".join(step.depends_on) or "-"
        line = f"  {step.step_id}: {step.agent_id} [{step.mode.value}] after {deps}"
        if step.condition is not None:
            line += f" if {step.condition.describe()}"
        if not step.critical:
            line += " (non-critical)"
        print(line)


async def _run_command(args) -> None:
    from handoff.execution.convenience import create_orchestrator
    from handoff.workflow.exceptions import HandoffError
    from handoff.workflow.models import Priority, Request

    settings = _load(args.config)

    def on_progress(status):
        print(
            f"  [{status['status']}] {status['completed_steps']}/{status['total_steps']} steps "
            f"({status['progress_pct']}%)"
        )

    try:
        orchestrator = create_orchestrator(settings, mock=args.mock, model=args.model)
        request = Request(
            text=args.request,
            priority=Priority(args.priority),
            target_files=tuple(args.files),
        )
        result = await orchestrator.handle(request, on_progress=on_progress)
    except HandoffError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\nWorkflow {result.workflow_id}: {result.outcome.value.upper()}")
    print(f"Duration: {result.duration_seconds:.2f}s")
    for agent_id, deliverables in result.deliverables.items():
        summary = deliverables.get(settings.config.summary_key, "")
        print(f"  {agent_id}: {summary}")
    if result.skipped_steps:
        print(f"Skipped: {', '.join(result.skipped_steps)}")
    if result.degraded_steps:
        print(f"Degraded: {', '.join(result.degraded_steps)}")
    for handoff in result.handoffs:
        print(f"Suggested handoff: {handoff.label} -> {handoff.to_agent}")
    if result.clarification:
        print(f"Clarification needed: {result.clarification}")
    if result.failure is not None:
        print(f"Failure: {result.failure.message}", file=sys.stderr)
        for line in result.failure.trail:
            print(f"  - {line}", file=sys.stderr)
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
