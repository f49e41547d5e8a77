from __future__ import annotations

import argparse

from rich.table import Table

from vector_store_manager.cli.context import CLIContext
from vector_store_manager.cli.options import add_project_option


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("search", help="Semantic search over one vector store")
    parser.add_argument("vector_store_id")
    parser.add_argument("--query", required=True)
    parser.add_argument("--limit", type=int, default=0, help="Number of chunks to return (0 = default of 10)")
    add_project_option(parser)
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    services = ctx.services()
    # Scope the lookup to the project before searching by id.
    services.vector_stores.get_vector_store(ctx.project_id(args.project), args.vector_store_id)
    results = services.retrieval.search_vector_store(args.vector_store_id, args.query, args.limit)

    table = Table(title=f"Search Results ({len(results)})")
    table.add_column("#")
    table.add_column("Text", overflow="fold")
    for idx, text in enumerate(results, start=1):
        table.add_row(str(idx), text)

    ctx.console.print(table)
    return 0
