from __future__ import annotations

import argparse

from rich.table import Table

from vector_store_manager.cli.context import CLIContext
from vector_store_manager.cli.options import (
    add_chunking_options,
    add_page_options,
    add_project_option,
    chunking_strategy_from_args,
)
from vector_store_manager.domain.models.vector_store_file import VectorStoreFile


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("store-files", help="Manage the files of a vector store")
    sf_subparsers = parser.add_subparsers(dest="store_files_command", required=True)

    add = sf_subparsers.add_parser("add", help="Ingest a registered file into a vector store")
    add.add_argument("vector_store_id")
    add.add_argument("file_id")
    add_chunking_options(add)
    add_project_option(add)
    add.set_defaults(handler=run_add)

    list_parser = sf_subparsers.add_parser("list", help="List the files of a vector store")
    list_parser.add_argument("vector_store_id")
    add_page_options(list_parser)
    add_project_option(list_parser)
    list_parser.set_defaults(handler=run_list)

    get = sf_subparsers.add_parser("get", help="Show one vector store file")
    get.add_argument("vector_store_id")
    get.add_argument("file_id")
    add_project_option(get)
    get.set_defaults(handler=run_get)

    delete = sf_subparsers.add_parser("delete", help="Remove a file and its chunks from a vector store")
    delete.add_argument("vector_store_id")
    delete.add_argument("file_id")
    add_project_option(delete)
    delete.set_defaults(handler=run_delete)

    cancel = sf_subparsers.add_parser("cancel", help="Cancel an in-progress file")
    cancel.add_argument("vector_store_id")
    cancel.add_argument("file_id")
    add_project_option(cancel)
    cancel.set_defaults(handler=run_cancel)


def run_add(args: argparse.Namespace, ctx: CLIContext) -> int:
    with ctx.console.status(f"Ingesting {args.file_id}"):
        record = ctx.services().vector_store_files.create_vector_store_file(
            ctx.project_id(args.project),
            args.vector_store_id,
            args.file_id,
            chunking_strategy_from_args(args),
        )
    _print_files(ctx, [record], title="Added File")
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    page = ctx.services().vector_store_files.list_vector_store_files(
        ctx.project_id(args.project),
        args.vector_store_id,
        after=args.after,
        order=args.order,
        limit=args.limit,
    )
    _print_files(ctx, page.data, title=f"Files of {args.vector_store_id} ({len(page.data)})")
    if page.has_more:
        ctx.console.print(f"[yellow]More results available[/yellow] --after {page.last_id}")
    return 0


def run_get(args: argparse.Namespace, ctx: CLIContext) -> int:
    record = ctx.services().vector_store_files.get_vector_store_file(
        ctx.project_id(args.project), args.vector_store_id, args.file_id
    )
    _print_files(ctx, [record], title="Vector Store File")
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    deleted = ctx.services().vector_store_files.delete_vector_store_file(
        ctx.project_id(args.project), args.vector_store_id, args.file_id
    )
    ctx.console.print(f"[green]Deleted[/green] {deleted.id} from {args.vector_store_id}")
    return 0


def run_cancel(args: argparse.Namespace, ctx: CLIContext) -> int:
    record = ctx.services().vector_store_files.cancel_vector_store_file(
        ctx.project_id(args.project), args.vector_store_id, args.file_id
    )
    _print_files(ctx, [record], title="Cancelled File")
    return 0


def _print_files(ctx: CLIContext, records: list[VectorStoreFile], *, title: str) -> None:
    table = Table(title=title)
    table.add_column("File ID")
    table.add_column("Status")
    table.add_column("Usage (bytes)")
    table.add_column("Chunking")
    table.add_column("Last Error", overflow="fold")

    for r in records:
        strategy = r.chunking_strategy
        chunking = f"{strategy.type} {strategy.max_chunk_size_tokens}/{strategy.chunk_overlap_tokens}"
        error = f"{r.last_error_code}: {r.last_error_message}" if r.last_error_code else ""
        table.add_row(r.file_id, r.status, str(r.usage_bytes), chunking, error)

    ctx.console.print(table)
