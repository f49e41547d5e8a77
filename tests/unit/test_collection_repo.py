from __future__ import annotations

from pathlib import Path

import pytest

from vector_store_manager.core.errors import AlreadyExistsError, ConcurrentUpdateError, NotFoundError, ValidationError
from vector_store_manager.core.ids import new_vector_store_id, stable_int64
from vector_store_manager.domain.models.vector_store import Collection, CollectionMetadata
from vector_store_manager.domain.models.vector_store_file import AutoChunkingStrategy, VectorStoreFile
from vector_store_manager.infrastructure.db.pagination import PageRequest
from vector_store_manager.infrastructure.db.repos.collection_metadata_repo import CollectionMetadataRepo
from vector_store_manager.infrastructure.db.repos.collection_repo import CollectionRepo
from vector_store_manager.infrastructure.db.repos.vector_store_file_repo import VectorStoreFileRepo
from vector_store_manager.infrastructure.db.sqlite import initialize_schema


def _repo(tmp_path: Path) -> CollectionRepo:
    db_path = tmp_path / "vsm.db"
    initialize_schema(db_path)
    return CollectionRepo(db_path)


def _collection(name: str, created_at: str, project_id: str = "p") -> Collection:
    vector_store_id = new_vector_store_id()
    return Collection(
        vector_store_id=vector_store_id,
        collection_id=stable_int64(vector_store_id),
        project_id=project_id,
        name=name,
        status="completed",
        embedding_model="all-minilm",
        embedding_dimensions=384,
        created_at=created_at,
        last_active_at=0,
    )


def _seed(repo: CollectionRepo, count: int) -> list[str]:
    ids = []
    for i in range(count):
        # Pairs share a timestamp so the row id has to break ties.
        created_at = f"2024-01-01T00:00:{i // 2:02d}.000000+00:00"
        ids.append(repo.insert(_collection(f"s{i}", created_at)).vector_store_id)
    return ids


def test_insert_duplicate_name_in_project_raises(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.insert(_collection("docs", "2024-01-01T00:00:00+00:00"))

    with pytest.raises(AlreadyExistsError):
        repo.insert(_collection("docs", "2024-01-01T00:00:01+00:00"))
    repo.insert(_collection("docs", "2024-01-01T00:00:01+00:00", project_id="other"))


def test_update_is_compare_and_swap_on_version(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    created = repo.insert(_collection("docs", "2024-01-01T00:00:00+00:00"))
    assert created.version == 0

    first = repo.get_by_vector_store_id("p", created.vector_store_id)
    stale = repo.get_by_vector_store_id("p", created.vector_store_id)

    first.usage_bytes = 10
    repo.update(first)
    assert first.version == 1

    stale.usage_bytes = 99
    with pytest.raises(ConcurrentUpdateError):
        repo.update(stale)

    stored = repo.get_by_vector_store_id("p", created.vector_store_id)
    assert stored.usage_bytes == 10
    assert stored.version == 1


def test_delete_missing_collection_raises(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    with pytest.raises(NotFoundError):
        repo.delete("p", "vs_missing")


@pytest.mark.parametrize("order", ["asc", "desc"])
def test_pagination_traverses_every_row_once(tmp_path: Path, order: str) -> None:
    repo = _repo(tmp_path)
    ids = _seed(repo, 7)
    expected = ids if order == "asc" else list(reversed(ids))

    seen: list[str] = []
    after = None
    pages = 0
    while True:
        page = repo.list_with_pagination("p", PageRequest.build(limit=3, order=order, after=after))
        pages += 1
        seen.extend(c.vector_store_id for c in page.data)
        assert page.first_id == page.data[0].vector_store_id
        assert page.last_id == page.data[-1].vector_store_id
        if not page.has_more:
            break
        assert len(page.data) == 3
        after = page.last_id

    assert seen == expected
    assert pages == 3


def test_pagination_limit_equal_to_count_has_no_more(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    _seed(repo, 3)
    page = repo.list_with_pagination("p", PageRequest.build(limit=3))
    assert len(page.data) == 3
    assert page.has_more is False


def test_pagination_empty_and_unknown_cursor(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    page = repo.list_with_pagination("p", PageRequest.build())
    assert page.data == []
    assert page.first_id == ""
    assert page.has_more is False

    with pytest.raises(NotFoundError, match="invalid value of after"):
        repo.list_with_pagination("p", PageRequest.build(after="vs_nope"))


def test_page_request_normalization() -> None:
    assert PageRequest.build() == PageRequest(limit=20, order="desc", after="")
    assert PageRequest.build(limit=0).limit == 20
    assert PageRequest.build(limit=500).limit == 100
    assert PageRequest.build(order="ASC").order == "asc"
    with pytest.raises(ValidationError):
        PageRequest.build(limit=-1)
    with pytest.raises(ValidationError):
        PageRequest.build(order="sideways")


def test_metadata_repo_cas_and_cascade(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    collection = repo.insert(_collection("docs", "2024-01-01T00:00:00+00:00"))
    meta_repo = CollectionMetadataRepo(repo.db_path)

    row = meta_repo.insert(CollectionMetadata(vector_store_id=collection.vector_store_id, key="k", value="v"))
    with pytest.raises(AlreadyExistsError):
        meta_repo.insert(CollectionMetadata(vector_store_id=collection.vector_store_id, key="k", value="w"))

    stale = meta_repo.list_for_vector_store(collection.vector_store_id)[0]
    row.value = "v2"
    meta_repo.update(row)
    stale.value = "v3"
    with pytest.raises(ConcurrentUpdateError):
        meta_repo.update(stale)
    assert meta_repo.list_for_vector_store(collection.vector_store_id)[0].value == "v2"

    with pytest.raises(NotFoundError):
        meta_repo.delete(collection.vector_store_id, "missing")
    assert meta_repo.delete_for_vector_store(collection.vector_store_id) == 1


def test_rows_for_a_missing_vector_store_are_not_found(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    meta_repo = CollectionMetadataRepo(repo.db_path)
    file_repo = VectorStoreFileRepo(repo.db_path)

    with pytest.raises(NotFoundError, match="vs_gone"):
        meta_repo.insert(CollectionMetadata(vector_store_id="vs_gone", key="k", value="v"))
    with pytest.raises(NotFoundError, match="vs_gone"):
        file_repo.insert(
            VectorStoreFile(
                file_id="file_x",
                vector_store_id="vs_gone",
                project_id="proj",
                status="in_progress",
                chunking_strategy=AutoChunkingStrategy(),
                created_at="2024-01-01T00:00:00+00:00",
            )
        )
