from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from vector_store_manager.cli.context import CLIContext
from vector_store_manager.cli.options import (
    add_chunking_options,
    add_page_options,
    add_project_option,
    chunking_strategy_from_args,
    format_unix,
    parse_metadata_pairs,
)
from vector_store_manager.domain.models.vector_store import VectorStore


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("stores", help="Create, inspect and delete vector stores")
    stores_subparsers = parser.add_subparsers(dest="stores_command", required=True)

    create = stores_subparsers.add_parser("create", help="Create a vector store")
    create.add_argument("name")
    create.add_argument("--file-id", action="append", default=[], help="Registered file to ingest (repeatable)")
    create.add_argument("--expires-after-days", type=int, default=None)
    create.add_argument("--metadata", action="append", default=None, metavar="KEY=VALUE")
    add_chunking_options(create)
    add_project_option(create)
    create.set_defaults(handler=run_create)

    list_parser = stores_subparsers.add_parser("list", help="List vector stores")
    add_page_options(list_parser)
    add_project_option(list_parser)
    list_parser.set_defaults(handler=run_list)

    get = stores_subparsers.add_parser("get", help="Show one vector store")
    get.add_argument("vector_store_id")
    add_project_option(get)
    get.set_defaults(handler=run_get)

    update = stores_subparsers.add_parser("update", help="Rename a store or change its expiry and metadata")
    update.add_argument("vector_store_id")
    update.add_argument("--name", default=None)
    update.add_argument("--expires-after-days", type=int, default=None)
    update.add_argument("--metadata", action="append", default=None, metavar="KEY=VALUE")
    update.add_argument("--clear-metadata", action="store_true")
    add_project_option(update)
    update.set_defaults(handler=run_update)

    delete = stores_subparsers.add_parser("delete", help="Delete a vector store and its index collection")
    delete.add_argument("vector_store_id")
    add_project_option(delete)
    delete.set_defaults(handler=run_delete)


def run_create(args: argparse.Namespace, ctx: CLIContext) -> int:
    services = ctx.services()
    expires_after = _expires_after(args.expires_after_days)
    result = services.vector_stores.create_vector_store(
        ctx.project_id(args.project),
        args.name,
        file_ids=args.file_id,
        chunking_strategy=chunking_strategy_from_args(args),
        expires_after=expires_after,
        metadata=parse_metadata_pairs(args.metadata),
    )
    if result.vector_store is not None:
        _print_store(ctx, result.vector_store)
    if result.error is not None:
        out = Table(title="Files Not Ingested")
        out.add_column("File ID")
        out.add_column("Message", overflow="fold")
        for failure in result.error.failures:
            out.add_row(failure.file_id, failure.message)
        ctx.console.print(out)
        return 1
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    page = ctx.services().vector_stores.list_vector_stores(
        ctx.project_id(args.project),
        after=args.after,
        order=args.order,
        limit=args.limit,
    )

    table = Table(title=f"Vector Stores ({len(page.data)})")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Files")
    table.add_column("Usage (bytes)")
    table.add_column("Last Active")

    for store in page.data:
        c = store.collection
        table.add_row(
            c.vector_store_id,
            c.name,
            c.status,
            f"{c.file_counts.completed}/{c.file_counts.total}",
            str(c.usage_bytes),
            format_unix(c.last_active_at),
        )

    ctx.console.print(table)
    if page.has_more:
        ctx.console.print(f"[yellow]More results available[/yellow] --after {page.last_id}")
    return 0


def run_get(args: argparse.Namespace, ctx: CLIContext) -> int:
    store = ctx.services().vector_stores.get_vector_store(ctx.project_id(args.project), args.vector_store_id)
    _print_store(ctx, store)
    return 0


def run_update(args: argparse.Namespace, ctx: CLIContext) -> int:
    metadata = parse_metadata_pairs(args.metadata)
    if args.clear_metadata:
        metadata = {}
    store = ctx.services().vector_stores.update_vector_store(
        ctx.project_id(args.project),
        args.vector_store_id,
        name=args.name,
        expires_after=_expires_after(args.expires_after_days),
        metadata=metadata,
    )
    _print_store(ctx, store)
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    deleted = ctx.services().vector_stores.delete_vector_store(ctx.project_id(args.project), args.vector_store_id)
    ctx.console.print(f"[green]Deleted[/green] {deleted.id}")
    return 0


def _expires_after(days: int | None) -> dict | None:
    if days is None:
        return None
    return {"anchor": "last_active_at", "days": days}


def _print_store(ctx: CLIContext, store: VectorStore) -> None:
    c = store.collection
    counts = c.file_counts
    lines = [
        f"Name: {c.name}",
        f"Status: {c.status}",
        f"Embedding: {c.embedding_model} ({c.embedding_dimensions} dims)",
        f"Usage: {c.usage_bytes} bytes",
        f"Files: {counts.completed} completed, {counts.in_progress} in progress, "
        f"{counts.failed} failed, {counts.cancelled} cancelled ({counts.total} total)",
        f"Last active: {format_unix(c.last_active_at)}",
        f"Expires at: {format_unix(c.expires_at)}",
    ]
    for key, value in sorted(store.metadata.items()):
        lines.append(f"  {key} = {value}")
    ctx.console.print(Panel.fit("\n".join(lines), title=c.vector_store_id))
