"""
genflow - Main Entry Point

Command-line access to the engine: validate, estimate and run saved
workflows, and browse the node catalog.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from genflow.core.errors import WorkflowError
from genflow.core.execution import ExecutionOrchestrator, RunStatus
from genflow.core.events import ExecutionEvent, ExecutionEventType
from genflow.core.node_types import NodeCategory, NodeRegistry
from genflow.core.workspace import ImportedWorkflow, graph_summary, load_workflow, save_workflow
from genflow.credits import (
    MIN_EXECUTION_BALANCE,
    CreditLedger,
    estimate_workflow_cost,
    format_credits,
    format_credits_as_usd,
)
from genflow.nodes import register_all_nodes
from genflow.providers import create_default_registry
from genflow.storage import InMemoryStore


def build_node_registry(catalog: Path | None = None) -> NodeRegistry:
    """Built-in node types, plus any loaded from a JSON catalog."""
    registry = register_all_nodes(NodeRegistry())
    if catalog is not None:
        registry.load_catalog(catalog)
    return registry


# ============================================================================
# Commands
# ============================================================================

def cmd_validate(args: argparse.Namespace) -> int:
    workflow = load_workflow(args.workflow)
    registry = build_node_registry(args.catalog)
    store = InMemoryStore()
    orchestrator = ExecutionOrchestrator(
        registry, create_default_registry(registry), CreditLedger(store), store,
    )

    orchestrator.validate(workflow.graph)
    summary = graph_summary(workflow.graph)
    print(f'"{workflow.name}" is valid: {summary["nodes"]} nodes, {summary["edges"]} edges')
    for i, node in enumerate(workflow.graph.execution_order(), start=1):
        print(f"  {i}. {node.id} ({node.type})")
    return 0


def cmd_estimate(args: argparse.Namespace) -> int:
    workflow = load_workflow(args.workflow)
    registry = build_node_registry(args.catalog)

    order = workflow.graph.execution_order(args.nodes)
    estimate = estimate_workflow_cost(registry, order, args.balance)

    for item in estimate.breakdown:
        print(f"  {item.node_id:<16} {item.node_name:<20} {format_credits(item.estimated_cost):>10}")
    print(f"Total: {format_credits(estimate.total)} ({format_credits_as_usd(estimate.total)})")

    if args.balance < MIN_EXECUTION_BALANCE:
        print(f"Balance below the minimum of {format_credits(MIN_EXECUTION_BALANCE)} credits")
    if not estimate.can_execute:
        print(f"Insufficient credits: short by {format_credits(estimate.insufficient_by or 0)}")
        return 1
    return 0


def cmd_nodes(args: argparse.Namespace) -> int:
    registry = build_node_registry(args.catalog)

    configs = registry.search(args.search or "")
    if args.category:
        category = NodeCategory(args.category)
        configs = [c for c in configs if c.category is category]

    for config in configs:
        provider = config.provider_id or "local"
        print(f"{config.type:<16} {config.category.value:<10} {provider:<12} {config.name}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    workflow = load_workflow(args.workflow)
    return asyncio.run(_run(args, workflow))


async def _run(args: argparse.Namespace, workflow: ImportedWorkflow) -> int:
    registry = build_node_registry(args.catalog)
    providers = create_default_registry(registry)
    providers.load_config(args.config)

    store = InMemoryStore()
    ledger = CreditLedger(store)
    await ledger.open_account(args.user, args.credits)

    orchestrator = ExecutionOrchestrator(registry, providers, ledger, store)

    def report(event: ExecutionEvent) -> None:
        if event.type is ExecutionEventType.NODE_COMPLETED:
            print(f"  ✓ {event.node_id} ({format_credits(event.data.get('credits_charged', 0))} credits)")
        elif event.type is ExecutionEventType.NODE_FAILED:
            print(f"  ✗ {event.node_id}: [{event.data.get('error_code')}] {event.data.get('error')}")

    orchestrator.events.subscribe(
        [ExecutionEventType.NODE_COMPLETED, ExecutionEventType.NODE_FAILED],
        report,
    )

    result = await orchestrator.run(workflow.graph, args.user, workflow_id=workflow.name, node_ids=args.nodes)

    balance = await ledger.get_balance(args.user)
    print(f"Run {result.run_id}: {result.status.value}")
    print(f"Charged {format_credits(result.credits_charged)}, balance {format_credits(balance)}")

    if args.output:
        path = save_workflow(workflow.graph, workflow.name, workflow.description, args.output)
        print(f"Saved workflow to {path}")

    return 0 if result.status is RunStatus.COMPLETED else 1


# ============================================================================
# Argument parsing
# ============================================================================

def _node_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genflow", description=__doc__.strip().splitlines()[0])
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--catalog", type=Path, help="Extra node catalog (JSON)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Validate a workflow and print its execution order")
    p.add_argument("workflow", type=Path)
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("estimate", help="Estimate the credit cost of a workflow")
    p.add_argument("workflow", type=Path)
    p.add_argument("--balance", type=int, default=0, help="Balance to check against")
    p.add_argument("--nodes", type=_node_list, help="Comma-separated node ids to run")
    p.set_defaults(func=cmd_estimate)

    p = sub.add_parser("nodes", help="List available node types")
    p.add_argument("--search", help="Prefix search over names, descriptions and tags")
    p.add_argument("--category", choices=[c.value for c in NodeCategory])
    p.set_defaults(func=cmd_nodes)

    p = sub.add_parser("run", help="Run a workflow against an in-memory account")
    p.add_argument("workflow", type=Path)
    p.add_argument("--user", default="local", help="Account id")
    p.add_argument("--credits", type=int, required=True, help="Starting balance")
    p.add_argument("--nodes", type=_node_list, help="Comma-separated node ids to run")
    p.add_argument("--config", type=Path, help="Provider config (JSON)")
    p.add_argument("--output", type=Path, help="Write the updated workflow here")
    p.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for genflow.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except WorkflowError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 2
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
