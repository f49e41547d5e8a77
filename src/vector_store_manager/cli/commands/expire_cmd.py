from __future__ import annotations

import argparse

from vector_store_manager.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("expire", help="Mark vector stores past their expiry as expired")
    parser.add_argument("--project", default=None, help="Only expire stores of this project")
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    count = ctx.services().vector_stores.expire_vector_stores(args.project)
    if count:
        ctx.console.print(f"[yellow]Expired[/yellow] {count} vector store(s)")
    else:
        ctx.console.print("[green]No vector stores to expire[/green]")
    return 0
