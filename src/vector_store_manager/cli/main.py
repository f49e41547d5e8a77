from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console

from vector_store_manager.cli.commands import (
    doctor_cmd,
    expire_cmd,
    files_cmd,
    init_cmd,
    search_cmd,
    serve_cmd,
    store_files_cmd,
    stores_cmd,
)
from vector_store_manager.cli.context import CLIContext
from vector_store_manager.core.config import load_config
from vector_store_manager.core.errors import VSMError
from vector_store_manager.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vsm",
        description="Vector store manager CLI",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .vsm data (default: current working directory)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    init_cmd.register(subparsers)
    files_cmd.register(subparsers)
    stores_cmd.register(subparsers)
    store_files_cmd.register(subparsers)
    search_cmd.register(subparsers)
    expire_cmd.register(subparsers)
    doctor_cmd.register(subparsers)
    serve_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        config = load_config(args.project_root)
        ctx = CLIContext(config=config, console=console)
        try:
            return handler(args, ctx)
        finally:
            ctx.close()
    except VSMError as exc:
        logger.error(str(exc))
        return 1

