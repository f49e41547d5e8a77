from __future__ import annotations

import argparse
import logging

from vector_store_manager.cli.context import CLIContext
from vector_store_manager.web.app import create_app

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("serve", help="Run the vector store HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("uvicorn is required for serve mode. Install project dependencies.") from exc

    services = ctx.services()
    interrupted = services.vector_store_files.fail_interrupted_files()
    if interrupted:
        logger.warning("Marked %d interrupted file(s) as failed", interrupted)

    app = create_app(ctx.config, services=services)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0
