from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from vector_store_manager.application.services.health_service import ORPHAN_GRACE_SECONDS
from vector_store_manager.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("doctor", help="Run integrity and consistency checks")
    parser.add_argument(
        "--prune-orphans",
        action="store_true",
        help="Delete index collections that no vector store owns",
    )
    parser.add_argument(
        "--grace-seconds",
        type=float,
        default=ORPHAN_GRACE_SECONDS,
        help="Wait this long and check again before pruning, so stores being created are kept",
    )
    parser.set_defaults(handler=run_doctor)


def run_doctor(args: argparse.Namespace, ctx: CLIContext) -> int:
    services = ctx.services()
    report = services.health.run_doctor()

    summary = Panel.fit(
        f"Checks run: {report.checks_run}\n"
        f"Issues: {len(report.issues)}\n"
        f"Status: {'PASS' if report.ok else 'FAIL'}",
        title="Doctor Summary",
    )
    ctx.console.print(summary)

    runtime = Table(title="Database Runtime")
    runtime.add_column("Setting")
    runtime.add_column("Value", overflow="fold")
    for key, value in report.db_runtime.items():
        runtime.add_row(str(key), str(value))
    ctx.console.print(runtime)

    if report.issues:
        out = Table(title="Doctor Issues")
        out.add_column("Level")
        out.add_column("Check")
        out.add_column("Message", overflow="fold")
        for issue in report.issues:
            out.add_row(issue.level, issue.check, issue.message)
        ctx.console.print(out)

    if args.prune_orphans and report.orphaned_collections:
        for name in services.health.prune_orphaned_collections(args.grace_seconds):
            ctx.console.print(f"[yellow]Pruned[/yellow] {name}")

    return 0 if report.ok else 1
