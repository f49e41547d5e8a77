from __future__ import annotations

import pytest

from vector_store_manager.core.errors import ValidationError
from vector_store_manager.domain.models.vector_store_file import (
    AutoChunkingStrategy,
    StaticChunkingStrategy,
    check_file_transition,
    chunking_strategy_from_dict,
    chunking_strategy_to_dict,
)


def _static(size: int, overlap: int) -> dict:
    return {"type": "static", "static": {"max_chunk_size_tokens": size, "chunk_overlap_tokens": overlap}}


def test_auto_strategy_uses_defaults() -> None:
    strategy = chunking_strategy_from_dict(None)
    assert isinstance(strategy, AutoChunkingStrategy)
    assert (strategy.max_chunk_size_tokens, strategy.chunk_overlap_tokens) == (800, 400)
    assert chunking_strategy_from_dict({"type": "auto"}) == AutoChunkingStrategy()


@pytest.mark.parametrize(
    "size,overlap",
    [(50, 10), (4097, 100), (800, 0), (800, 401)],
)
def test_static_strategy_bounds_rejected(size: int, overlap: int) -> None:
    with pytest.raises(ValidationError):
        chunking_strategy_from_dict(_static(size, overlap))


def test_static_strategy_bounds_accepted() -> None:
    assert chunking_strategy_from_dict(_static(800, 400)) == StaticChunkingStrategy(800, 400)
    assert chunking_strategy_from_dict(_static(100, 50)).max_chunk_size_tokens == 100
    assert chunking_strategy_from_dict(_static(4096, 1)).chunk_overlap_tokens == 1


def test_malformed_strategy_payloads() -> None:
    with pytest.raises(ValidationError):
        chunking_strategy_from_dict({"type": "semantic"})
    with pytest.raises(ValidationError):
        chunking_strategy_from_dict({"type": "static"})
    with pytest.raises(ValidationError):
        chunking_strategy_from_dict({"type": "static", "static": {"max_chunk_size_tokens": "big"}})
    with pytest.raises(ValidationError):
        chunking_strategy_from_dict({"type": "auto", "static": {"max_chunk_size_tokens": 800}})


def test_strategy_serializes_as_tagged_variant() -> None:
    assert chunking_strategy_to_dict(AutoChunkingStrategy()) == {"type": "auto"}
    assert chunking_strategy_to_dict(StaticChunkingStrategy(200, 20)) == _static(200, 20)


def test_file_transitions() -> None:
    assert check_file_transition("in_progress", "completed") is True
    assert check_file_transition("in_progress", "cancelled") is True
    assert check_file_transition("failed", "failed") is False
    with pytest.raises(ValidationError):
        check_file_transition("completed", "failed")
    with pytest.raises(ValidationError):
        check_file_transition("in_progress", "in_progress")
