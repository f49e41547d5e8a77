from __future__ import annotations

import threading

import pytest

from vector_store_manager.core.errors import (
    AlreadyExistsError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from vector_store_manager.core.time import now_utc_iso
from vector_store_manager.domain.models.vector_store_file import (
    AutoChunkingStrategy,
    StaticChunkingStrategy,
    VectorStoreFile,
)

PROJECT = "proj-a"


def _store(services, name: str = "docs") -> str:
    return services.vector_stores.create_vector_store(PROJECT, name).vector_store.id


def _insert_in_progress_row(services, vector_store_id: str, file_id: str) -> None:
    services.vector_store_files.file_repo.insert(
        VectorStoreFile(
            file_id=file_id,
            vector_store_id=vector_store_id,
            project_id=PROJECT,
            status="in_progress",
            chunking_strategy=AutoChunkingStrategy(),
            created_at=now_utc_iso(),
        )
    )


def test_ingest_search_delete_round(services, register_text) -> None:
    vsid = _store(services)
    file_id = register_text("line1\nline2\n")

    record = services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)

    assert record.status == "completed"
    assert record.usage_bytes == 10
    assert services.retrieval.search_vector_store(vsid, "line1", 1) == ["line1"]

    store = services.vector_stores.get_vector_store(PROJECT, vsid)
    assert store.collection.file_counts.completed == 1
    assert store.collection.usage_bytes == 10

    deleted = services.vector_store_files.delete_vector_store_file(PROJECT, vsid, file_id)
    assert deleted.object == "vector_store.file"
    assert services.retrieval.search_vector_store(vsid, "line1", 1) == []

    store = services.vector_stores.get_vector_store(PROJECT, vsid)
    assert store.collection.file_counts.completed == 0
    assert store.collection.file_counts.total == 0
    assert store.collection.usage_bytes == 0
    with pytest.raises(NotFoundError):
        services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)


def test_create_file_passes_token_sizes_as_characters(services, register_text, fake_index) -> None:
    seen: dict[str, int] = {}

    class _RecordingSplitter:
        def split(self, content, file_type, chunk_size_chars, overlap_chars):
            seen["size"] = chunk_size_chars
            seen["overlap"] = overlap_chars
            seen["type"] = file_type
            return ["only chunk"]

    services.pipeline.splitter = _RecordingSplitter()
    vsid = _store(services)
    file_id = register_text("whatever", name="Guide.MD")

    record = services.vector_store_files.create_vector_store_file(
        PROJECT,
        vsid,
        file_id,
        {"type": "static", "static": {"max_chunk_size_tokens": 200, "chunk_overlap_tokens": 50}},
    )

    assert seen == {"size": 800, "overlap": 200, "type": ".md"}
    assert record.chunking_strategy == StaticChunkingStrategy(max_chunk_size_tokens=200, chunk_overlap_tokens=50)
    assert fake_index.insert_calls == 1


def test_create_file_validation(services, register_text) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")

    with pytest.raises(ValidationError):
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, "")
    with pytest.raises(ValidationError):
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, "file_unknown")
    with pytest.raises(NotFoundError):
        services.vector_store_files.create_vector_store_file(PROJECT, "vs_missing", file_id)
    with pytest.raises(ValidationError):
        services.vector_store_files.create_vector_store_file(
            PROJECT, vsid, file_id, {"type": "static", "static": {"max_chunk_size_tokens": 50, "chunk_overlap_tokens": 10}}
        )

    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)
    with pytest.raises(AlreadyExistsError):
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)


def test_sync_ingestion_failure_leaves_no_row(services, register_text, fake_embedder) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")
    fake_embedder.fail_with = RateLimitedError("429 too many requests")

    with pytest.raises(RateLimitedError):
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)

    with pytest.raises(NotFoundError):
        services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)
    assert services.vector_stores.get_vector_store(PROJECT, vsid).collection.file_counts.total == 0


def test_background_ingestion_completes_and_moves_counters(services, register_text) -> None:
    vsid = _store(services)
    file_id = register_text("line1\nline2\n")

    queued = services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id, wait=False)
    assert queued.status == "in_progress"

    services.vector_store_files.worker.wait_idle()

    record = services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)
    assert record.status == "completed"
    assert record.usage_bytes == 10
    collection = services.vector_stores.get_vector_store(PROJECT, vsid).collection
    assert collection.file_counts.in_progress == 0
    assert collection.file_counts.completed == 1
    assert collection.file_counts.total == 1
    assert collection.status == "completed"


def test_background_rate_limit_marks_file_failed(services, register_text, fake_embedder) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")
    fake_embedder.fail_with = RateLimitedError("429 too many requests")

    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id, wait=False)
    services.vector_store_files.worker.wait_idle()

    record = services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)
    assert record.status == "failed"
    assert record.last_error_code == "rate_limit_exceeded"
    assert record.to_dict()["last_error"]["code"] == "rate_limit_exceeded"
    counts = services.vector_stores.get_vector_store(PROJECT, vsid).collection.file_counts
    assert counts.failed == 1
    assert counts.in_progress == 0


def test_background_server_error_marks_file_failed(services, register_text, fake_embedder) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")
    fake_embedder.fail_with = RuntimeError("connection reset")

    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id, wait=False)
    services.vector_store_files.worker.wait_idle()

    record = services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)
    assert record.status == "failed"
    assert record.last_error_code == "server_error"


def test_cancel_running_job(services, register_text, fake_index) -> None:
    started = threading.Event()
    release = threading.Event()

    class _BlockingSplitter:
        def split(self, content, file_type, chunk_size_chars, overlap_chars):
            started.set()
            release.wait(timeout=5)
            return ["line1", "line2"]

    services.pipeline.splitter = _BlockingSplitter()
    vsid = _store(services)
    file_id = register_text("line1\nline2\n")

    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id, wait=False)
    assert started.wait(timeout=5)
    still_running = services.vector_store_files.cancel_vector_store_file(PROJECT, vsid, file_id)
    assert still_running.status == "in_progress"
    release.set()
    services.vector_store_files.worker.wait_idle()

    record = services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id)
    assert record.status == "cancelled"
    assert fake_index.collections[vsid] == []
    counts = services.vector_stores.get_vector_store(PROJECT, vsid).collection.file_counts
    assert counts.cancelled == 1
    assert counts.in_progress == 0


def test_cancel_without_live_job_settles_row(services) -> None:
    vsid = _store(services)
    _insert_in_progress_row(services, vsid, "file_orphan")

    record = services.vector_store_files.cancel_vector_store_file(PROJECT, vsid, "file_orphan")
    assert record.status == "cancelled"

    # Cancelling again is a no-op; cancelling a completed file is rejected.
    assert services.vector_store_files.cancel_vector_store_file(PROJECT, vsid, "file_orphan").status == "cancelled"


def test_cancel_completed_file_is_rejected(services, register_text) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")
    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)

    with pytest.raises(ValidationError):
        services.vector_store_files.cancel_vector_store_file(PROJECT, vsid, file_id)


def test_transition_file_status_state_machine(services) -> None:
    vsid = _store(services)
    _insert_in_progress_row(services, vsid, "file_a")
    files = services.vector_store_files

    done = files.transition_file_status(vsid, "file_a", "completed", usage_bytes=42)
    assert done.status == "completed"
    version = done.version

    again = files.transition_file_status(vsid, "file_a", "completed", usage_bytes=42)
    assert again.version == version

    with pytest.raises(ValidationError):
        files.transition_file_status(vsid, "file_a", "failed")
    with pytest.raises(ValidationError):
        files.transition_file_status(vsid, "file_a", "in_progress")
    with pytest.raises(NotFoundError):
        files.transition_file_status(vsid, "file_missing", "completed")

    collection = services.vector_stores.get_vector_store(PROJECT, vsid).collection
    assert collection.usage_bytes == 42
    assert collection.file_counts.completed == 1


def test_fail_interrupted_files(services) -> None:
    vsid = _store(services)
    _insert_in_progress_row(services, vsid, "file_a")
    _insert_in_progress_row(services, vsid, "file_b")

    assert services.vector_store_files.fail_interrupted_files() == 2
    assert services.vector_store_files.fail_interrupted_files() == 0

    record = services.vector_store_files.get_vector_store_file(PROJECT, vsid, "file_a")
    assert record.status == "failed"
    assert record.last_error_code == "server_error"


def test_list_vector_store_files_pagination(services, register_text) -> None:
    vsid = _store(services)
    file_ids = [register_text(f"chunk {i}\n", name=f"f{i}.txt") for i in range(3)]
    for file_id in file_ids:
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)

    page = services.vector_store_files.list_vector_store_files(PROJECT, vsid, limit=2)
    assert [f.file_id for f in page.data] == list(reversed(file_ids))[:2]
    assert page.has_more is True

    rest = services.vector_store_files.list_vector_store_files(PROJECT, vsid, limit=2, after=page.last_id)
    assert [f.file_id for f in rest.data] == [file_ids[0]]
    assert rest.has_more is False

    with pytest.raises(NotFoundError):
        services.vector_store_files.list_vector_store_files(PROJECT, vsid, after="file_nope")


def test_delete_missing_file_raises_not_found(services) -> None:
    vsid = _store(services)
    with pytest.raises(NotFoundError):
        services.vector_store_files.delete_vector_store_file(PROJECT, vsid, "file_missing")


def test_concurrent_duplicate_add_indexes_the_file_once(services, register_text, fake_index) -> None:
    entered = threading.Event()
    release = threading.Event()
    inner = services.pipeline.splitter

    class _HoldingSplitter:
        def split(self, content, file_type, chunk_size_chars, overlap_chars):
            entered.set()
            release.wait(timeout=5)
            return inner.split(content, file_type, chunk_size_chars, overlap_chars)

    services.pipeline.splitter = _HoldingSplitter()
    vsid = _store(services)
    file_id = register_text("line1\nline2\n")
    errors: list[Exception] = []

    def _add() -> None:
        try:
            services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)
        except AlreadyExistsError as exc:
            errors.append(exc)

    first = threading.Thread(target=_add)
    first.start()
    assert entered.wait(timeout=5)
    second = threading.Thread(target=_add)
    second.start()
    second.join(timeout=5)
    release.set()
    first.join(timeout=5)

    assert len(errors) == 1
    assert [row[0] for row in fake_index.collections[vsid]] == [file_id, file_id]
    assert services.retrieval.search_vector_store(vsid, "line1", 3).count("line1") == 1
    assert services.vector_store_files.get_vector_store_file(PROJECT, vsid, file_id).status == "completed"
    counts = services.vector_stores.get_vector_store(PROJECT, vsid).collection.file_counts
    assert counts.completed == 1
    assert counts.in_progress == 0
    assert counts.total == 1


def test_delete_during_background_insert_leaves_no_chunks(
    services, register_text, fake_index, monkeypatch: pytest.MonkeyPatch
) -> None:
    inserting = threading.Event()
    release = threading.Event()
    insert = fake_index.insert_documents

    def _held_insert(name, file_ids, texts, vectors) -> None:
        inserting.set()
        release.wait(timeout=5)
        insert(name, file_ids, texts, vectors)

    monkeypatch.setattr(fake_index, "insert_documents", _held_insert)
    vsid = _store(services)
    file_id = register_text("line1\nline2\n")

    services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id, wait=False)
    assert inserting.wait(timeout=5)
    services.vector_store_files.delete_vector_store_file(PROJECT, vsid, file_id)
    release.set()
    services.vector_store_files.worker.wait_idle()

    assert fake_index.collections[vsid] == []
    assert services.retrieval.search_vector_store(vsid, "line1", 2) == []
    counts = services.vector_stores.get_vector_store(PROJECT, vsid).collection.file_counts
    assert counts.total == 0
    assert counts.in_progress == 0


def test_sync_add_into_store_deleted_mid_ingest_is_not_found(services, register_text, fake_index) -> None:
    vsid = _store(services)
    file_id = register_text("line1\n")

    class _DeletingSplitter:
        def split(self, content, file_type, chunk_size_chars, overlap_chars):
            services.vector_stores.delete_vector_store(PROJECT, vsid)
            return ["line1"]

    services.pipeline.splitter = _DeletingSplitter()
    fake_index.fail_delete_collection = True

    with pytest.raises(NotFoundError):
        services.vector_store_files.create_vector_store_file(PROJECT, vsid, file_id)
    assert fake_index.collections[vsid] == []
