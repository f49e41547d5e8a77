from __future__ import annotations

import argparse
from pathlib import Path

from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from vector_store_manager.cli.context import CLIContext
from vector_store_manager.core.errors import ValidationError


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("files", help="Register source files in the archive")
    files_subparsers = parser.add_subparsers(dest="files_command", required=True)

    upload = files_subparsers.add_parser("upload", help="Copy local files into the archive and assign file ids")
    upload.add_argument("paths", nargs="+", help="Local file paths to register")
    upload.set_defaults(handler=run_upload)

    list_parser = files_subparsers.add_parser("list", help="List registered files")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.set_defaults(handler=run_list)


def run_upload(args: argparse.Namespace, ctx: CLIContext) -> int:
    registry = ctx.services().file_registry

    table = Table(title="Upload Results")
    table.add_column("File", overflow="fold")
    table.add_column("Status")
    table.add_column("File ID")

    exit_code = 0
    paths = [Path(p) for p in args.paths]

    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=ctx.console,
    )

    with progress:
        task = progress.add_task("Uploading", total=len(paths))
        for p in paths:
            try:
                result = registry.register_file(p)
                table.add_row(str(p), result.status, result.source_file.id)
            except ValidationError as exc:
                table.add_row(str(p), "error", str(exc))
                exit_code = 1
            finally:
                progress.advance(task)

    ctx.console.print(table)
    return exit_code


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    files = ctx.services().file_registry.list_files(limit=args.limit)

    table = Table(title=f"Files ({len(files)})")
    table.add_column("ID")
    table.add_column("Filename")
    table.add_column("Media Type")
    table.add_column("Size")
    table.add_column("Digest (sha256)", overflow="fold")

    for f in files:
        table.add_row(f.id, f.filename, f.media_type, str(f.size_bytes), f.digest_sha256)

    ctx.console.print(table)
    return 0
