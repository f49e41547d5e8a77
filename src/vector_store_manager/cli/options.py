from __future__ import annotations

import argparse
from datetime import datetime, timezone

from vector_store_manager.core.errors import ValidationError
from vector_store_manager.domain.models.vector_store_file import (
    DEFAULT_CHUNK_OVERLAP_TOKENS,
    DEFAULT_MAX_CHUNK_SIZE_TOKENS,
)


def add_project_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project",
        default=None,
        help="Project id that owns the vector stores (default: VSM_DEFAULT_PROJECT or 'default')",
    )


def add_page_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--after", default=None, help="Return items after this id")
    parser.add_argument("--order", choices=("asc", "desc"), default=None)
    parser.add_argument("--limit", type=int, default=None)


def add_chunking_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--max-chunk-size-tokens", type=int, default=None)
    parser.add_argument("--chunk-overlap-tokens", type=int, default=None)


def chunking_strategy_from_args(args: argparse.Namespace) -> dict | None:
    size = args.max_chunk_size_tokens
    overlap = args.chunk_overlap_tokens
    if size is None and overlap is None:
        return None
    return {
        "type": "static",
        "static": {
            "max_chunk_size_tokens": size if size is not None else DEFAULT_MAX_CHUNK_SIZE_TOKENS,
            "chunk_overlap_tokens": overlap if overlap is not None else DEFAULT_CHUNK_OVERLAP_TOKENS,
        },
    }


def parse_metadata_pairs(items: list[str] | None) -> dict[str, str] | None:
    """Turn repeated ``key=value`` flags into a metadata map."""
    if items is None:
        return None
    out: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValidationError(f"Metadata must be given as key=value, got {item!r}")
        out[key] = value
    return out


def format_unix(value: int | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
