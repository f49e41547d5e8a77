from __future__ import annotations

import pytest

from vector_store_manager.core.errors import InternalError, ValidationError
from vector_store_manager.core.ids import stable_int64
from vector_store_manager.infrastructure.vector.qdrant_index import IN_MEMORY_LOCATION, QdrantVectorIndex


def _index() -> QdrantVectorIndex:
    return QdrantVectorIndex(location=IN_MEMORY_LOCATION)


def test_insert_search_and_delete_documents() -> None:
    index = _index()
    assert index.create_collection("vs_1", 3, alias="p.docs") == stable_int64("vs_1")

    index.insert_documents(
        "vs_1",
        ["file_a", "file_a", "file_b"],
        ["north", "east", "up"],
        [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]],
    )
    assert index.count_documents("vs_1") == 3
    assert index.search("vs_1", [0.9, 0.1, 0.0], 1) == ["north"]

    index.delete_documents("vs_1", "file_a")
    assert index.count_documents("vs_1") == 1
    assert index.search("vs_1", [1.0, 0.0, 0.0], 5) == ["up"]

    # Deleting a file with no chunks is a no-op.
    index.delete_documents("vs_1", "file_missing")


def test_insert_documents_requires_aligned_lists() -> None:
    index = _index()
    index.create_collection("vs_1", 2)
    with pytest.raises(ValidationError):
        index.insert_documents("vs_1", ["f"], ["a", "b"], [[1.0, 0.0]])


def test_rename_moves_alias_only() -> None:
    index = _index()
    index.create_collection("vs_1", 2, alias="p.old")

    index.rename_collection("p.old", "p.new")

    assert index.list_collections() == ["vs_1"]
    with pytest.raises(InternalError):
        index.rename_collection("p.old", "p.other")


def test_delete_collection_is_idempotent() -> None:
    index = _index()
    index.create_collection("vs_1", 2)
    index.create_collection("vs_2", 2)

    index.delete_collection("vs_1")
    index.delete_collection("vs_1")

    assert index.list_collections() == ["vs_2"]


def test_create_collection_rejects_bad_dimension() -> None:
    with pytest.raises(ValidationError):
        _index().create_collection("vs_1", 0)
