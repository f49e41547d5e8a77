from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from vector_store_manager.core.errors import ValidationError
from vector_store_manager.core.time import iso_to_unix

VECTOR_STORE_FILE_OBJECT = "vector_store.file"

FILE_STATUS_IN_PROGRESS = "in_progress"
FILE_STATUS_COMPLETED = "completed"
FILE_STATUS_FAILED = "failed"
FILE_STATUS_CANCELLED = "cancelled"

FILE_STATUSES = (
    FILE_STATUS_IN_PROGRESS,
    FILE_STATUS_COMPLETED,
    FILE_STATUS_FAILED,
    FILE_STATUS_CANCELLED,
)
TERMINAL_FILE_STATUSES = frozenset({FILE_STATUS_COMPLETED, FILE_STATUS_FAILED, FILE_STATUS_CANCELLED})

LAST_ERROR_CODE_NONE = ""
LAST_ERROR_CODE_SERVER_ERROR = "server_error"
LAST_ERROR_CODE_RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

CHUNKING_STRATEGY_AUTO = "auto"
CHUNKING_STRATEGY_STATIC = "static"

MIN_MAX_CHUNK_SIZE_TOKENS = 100
MAX_MAX_CHUNK_SIZE_TOKENS = 4096
DEFAULT_MAX_CHUNK_SIZE_TOKENS = 800
DEFAULT_CHUNK_OVERLAP_TOKENS = 400


@dataclass(frozen=True, slots=True)
class AutoChunkingStrategy:
    type: str = CHUNKING_STRATEGY_AUTO

    @property
    def max_chunk_size_tokens(self) -> int:
        return DEFAULT_MAX_CHUNK_SIZE_TOKENS

    @property
    def chunk_overlap_tokens(self) -> int:
        return DEFAULT_CHUNK_OVERLAP_TOKENS


@dataclass(frozen=True, slots=True)
class StaticChunkingStrategy:
    max_chunk_size_tokens: int
    chunk_overlap_tokens: int
    type: str = CHUNKING_STRATEGY_STATIC

    def __post_init__(self) -> None:
        if self.max_chunk_size_tokens < MIN_MAX_CHUNK_SIZE_TOKENS:
            raise ValidationError(
                f"max_chunk_size_tokens must be no less than {MIN_MAX_CHUNK_SIZE_TOKENS}"
            )
        if self.max_chunk_size_tokens > MAX_MAX_CHUNK_SIZE_TOKENS:
            raise ValidationError(
                f"max_chunk_size_tokens must be no more than {MAX_MAX_CHUNK_SIZE_TOKENS}"
            )
        if self.chunk_overlap_tokens <= 0:
            raise ValidationError("chunk_overlap_tokens must be greater than 0")
        if self.chunk_overlap_tokens > self.max_chunk_size_tokens // 2:
            raise ValidationError(
                f"chunk_overlap_tokens must be no more than {self.max_chunk_size_tokens // 2}"
            )


ChunkingStrategy = Union[AutoChunkingStrategy, StaticChunkingStrategy]


def chunking_strategy_from_dict(raw: dict | None) -> ChunkingStrategy:
    """Parse a request payload such as ``{"type": "static", "static": {...}}``."""
    if raw is None:
        return AutoChunkingStrategy()
    strategy_type = str(raw.get("type") or "").strip().lower()
    if strategy_type == CHUNKING_STRATEGY_AUTO:
        if raw.get("static"):
            raise ValidationError("static parameters are only valid with the static chunking strategy")
        return AutoChunkingStrategy()
    if strategy_type == CHUNKING_STRATEGY_STATIC:
        static = raw.get("static")
        if not isinstance(static, dict):
            raise ValidationError("static chunking strategy requires static parameters")
        try:
            max_tokens = int(static["max_chunk_size_tokens"])
            overlap_tokens = int(static["chunk_overlap_tokens"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                "static chunking strategy requires integer max_chunk_size_tokens and chunk_overlap_tokens"
            ) from exc
        return StaticChunkingStrategy(
            max_chunk_size_tokens=max_tokens,
            chunk_overlap_tokens=overlap_tokens,
        )
    raise ValidationError("chunking strategy type must be either auto or static")


def chunking_strategy_to_dict(strategy: ChunkingStrategy) -> dict:
    if isinstance(strategy, StaticChunkingStrategy):
        return {
            "type": CHUNKING_STRATEGY_STATIC,
            "static": {
                "max_chunk_size_tokens": strategy.max_chunk_size_tokens,
                "chunk_overlap_tokens": strategy.chunk_overlap_tokens,
            },
        }
    return {"type": CHUNKING_STRATEGY_AUTO}


@dataclass(slots=True)
class VectorStoreFile:
    file_id: str
    vector_store_id: str
    project_id: str
    status: str
    chunking_strategy: ChunkingStrategy
    created_at: str
    usage_bytes: int = 0
    last_error_code: str = LAST_ERROR_CODE_NONE
    last_error_message: str = ""
    version: int = 0
    row_id: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_FILE_STATUSES

    def to_dict(self) -> dict:
        last_error = None
        if self.last_error_code != LAST_ERROR_CODE_NONE:
            last_error = {"code": self.last_error_code, "message": self.last_error_message}
        return {
            "id": self.file_id,
            "object": VECTOR_STORE_FILE_OBJECT,
            "usage_bytes": self.usage_bytes,
            "created_at": iso_to_unix(self.created_at),
            "vector_store_id": self.vector_store_id,
            "status": self.status,
            "last_error": last_error,
            "chunking_strategy": chunking_strategy_to_dict(self.chunking_strategy),
        }


def check_file_transition(current: str, target: str) -> bool:
    """Return True when the move must be written, False when it is a no-op.

    ``in_progress`` may move to any terminal status. Repeating the terminal
    status a file already has is a no-op; any other move is rejected.
    """
    if target not in TERMINAL_FILE_STATUSES:
        raise ValidationError(f"Cannot move a file to non-terminal status {target!r}")
    if current == target:
        return False
    if current != FILE_STATUS_IN_PROGRESS:
        raise ValidationError(f"File status {current!r} is terminal; cannot move to {target!r}")
    return True
