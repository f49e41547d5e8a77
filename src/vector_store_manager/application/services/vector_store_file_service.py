from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from vector_store_manager.application.ports import FileRegistry
from vector_store_manager.application.services.embedding_pipeline import EmbeddingPipeline
from vector_store_manager.core.errors import (
    AlreadyExistsError,
    ConcurrentUpdateError,
    IngestionCancelledError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from vector_store_manager.core.time import now_unix, now_utc_iso
from vector_store_manager.domain.models.page import DeletedObject, Page
from vector_store_manager.domain.models.vector_store import Collection
from vector_store_manager.domain.models.vector_store_file import (
    FILE_STATUS_CANCELLED,
    FILE_STATUS_COMPLETED,
    FILE_STATUS_FAILED,
    FILE_STATUS_IN_PROGRESS,
    LAST_ERROR_CODE_NONE,
    LAST_ERROR_CODE_RATE_LIMIT_EXCEEDED,
    LAST_ERROR_CODE_SERVER_ERROR,
    VECTOR_STORE_FILE_OBJECT,
    ChunkingStrategy,
    VectorStoreFile,
    check_file_transition,
    chunking_strategy_from_dict,
)
from vector_store_manager.infrastructure.db.pagination import PageRequest
from vector_store_manager.infrastructure.db.repos.collection_repo import CollectionRepo
from vector_store_manager.infrastructure.db.repos.vector_store_file_repo import VectorStoreFileRepo
from vector_store_manager.infrastructure.db.sqlite import transaction

logger = logging.getLogger(__name__)

_TRANSITION_ATTEMPTS = 3


def resolve_chunking_strategy(raw: ChunkingStrategy | dict | None) -> ChunkingStrategy:
    if raw is None or isinstance(raw, dict):
        return chunking_strategy_from_dict(raw)
    return raw


def require_registered_file(file_registry: FileRegistry, file_id: str):
    """Resolve a file referenced by a request; an unknown id is a bad argument."""
    try:
        return file_registry.get_file(file_id)
    except NotFoundError as exc:
        raise ValidationError(f"file {file_id!r} not found") from exc


@dataclass(slots=True)
class IngestionJob:
    project_id: str
    vector_store_id: str
    file_id: str
    file_name: str
    source_path: str
    embedding_model: str
    chunking_strategy: ChunkingStrategy


class IngestionWorker:
    """Single daemon thread that runs queued ingestion jobs in submission order."""

    def __init__(self, run_job: Callable[[IngestionJob, Callable[[], bool]], None]) -> None:
        self._run_job = run_job
        self._queue: queue.Queue[IngestionJob | None] = queue.Queue()
        self._pending: set[tuple[str, str]] = set()
        self._cancelled: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._worker = threading.Thread(target=self._worker_loop, daemon=True, name="vector-store-ingestion")
        self._worker.start()

    def submit(self, job: IngestionJob) -> None:
        with self._lock:
            self._pending.add((job.vector_store_id, job.file_id))
        self._queue.put(job)

    def cancel(self, vector_store_id: str, file_id: str) -> bool:
        """Request cancellation; False when no such job is queued or running."""
        key = (vector_store_id, file_id)
        with self._lock:
            if key not in self._pending:
                return False
            self._cancelled.add(key)
            return True

    def wait_idle(self) -> None:
        self._queue.join()

    def shutdown(self, timeout: float = 2.0) -> None:
        self._queue.put(None)
        if self._worker.is_alive():
            self._worker.join(timeout=timeout)

    def _worker_loop(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                key = (job.vector_store_id, job.file_id)

                def cancellation_check() -> bool:
                    with self._lock:
                        return key in self._cancelled

                try:
                    self._run_job(job, cancellation_check)
                except Exception:
                    logger.exception("Background ingestion of %s into %s failed", job.file_id, job.vector_store_id)
                finally:
                    with self._lock:
                        self._pending.discard(key)
                        self._cancelled.discard(key)
            finally:
                self._queue.task_done()


class VectorStoreFileService:
    def __init__(
        self,
        *,
        db_path: Path,
        collection_repo: CollectionRepo,
        file_repo: VectorStoreFileRepo,
        file_registry: FileRegistry,
        pipeline: EmbeddingPipeline,
        worker: IngestionWorker | None = None,
    ) -> None:
        self.db_path = db_path
        self.collection_repo = collection_repo
        self.file_repo = file_repo
        self.file_registry = file_registry
        self.pipeline = pipeline
        self._worker = worker
        self._worker_lock = threading.Lock()

    @property
    def worker(self) -> IngestionWorker:
        with self._worker_lock:
            if self._worker is None:
                self._worker = IngestionWorker(self._run_background_job)
            return self._worker

    def create_vector_store_file(
        self,
        project_id: str,
        vector_store_id: str,
        file_id: str,
        chunking_strategy: ChunkingStrategy | dict | None = None,
        *,
        wait: bool = True,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> VectorStoreFile:
        """Ingest a registered file into a vector store.

        An ``in_progress`` row claims ``(vector_store_id, file_id)`` before any
        chunk reaches the index. With ``wait=True`` the file is indexed in the
        calling thread and the row settles as ``completed``; a failed ingestion
        removes the row again. With ``wait=False`` a background worker drives
        the row to a terminal status.
        """
        if not vector_store_id:
            raise ValidationError("vector store id is required")
        if not file_id:
            raise ValidationError("file id is required")
        strategy = resolve_chunking_strategy(chunking_strategy)

        source_file = require_registered_file(self.file_registry, file_id)
        source_path = self.file_registry.get_file_path(file_id)
        collection = self._require_collection(project_id, vector_store_id)
        if self.file_repo.get(vector_store_id, file_id) is not None:
            raise AlreadyExistsError(f"file {file_id!r} already exists in vector store {vector_store_id!r}")

        record = self._claim(collection, file_id, strategy)
        job = IngestionJob(
            project_id=collection.project_id,
            vector_store_id=collection.vector_store_id,
            file_id=file_id,
            file_name=source_file.filename,
            source_path=source_path,
            embedding_model=collection.embedding_model,
            chunking_strategy=strategy,
        )
        if not wait:
            self.worker.submit(job)
            logger.info("Queued file %s for vector store %s", file_id, vector_store_id)
            return record

        try:
            texts = self._add_file(job, cancellation_check)
        except Exception:
            self._release(record)
            raise
        try:
            record = self.transition_file_status(
                vector_store_id,
                file_id,
                FILE_STATUS_COMPLETED,
                usage_bytes=sum(len(text) for text in texts),
            )
        except (NotFoundError, ValidationError):
            # Deleted or cancelled while ingesting; its chunks must not outlive the row.
            self.pipeline.delete_file(vector_store_id, file_id)
            raise
        logger.info("Added file %s to vector store %s (%d chunks)", file_id, vector_store_id, len(texts))
        return record

    def get_vector_store_file(self, project_id: str, vector_store_id: str, file_id: str) -> VectorStoreFile:
        self._require_ids(vector_store_id, file_id)
        self._require_collection(project_id, vector_store_id)
        record = self.file_repo.get(vector_store_id, file_id)
        if record is None:
            raise NotFoundError(f"file {file_id!r} not found in vector store {vector_store_id!r}")
        return record

    def list_vector_store_files(
        self,
        project_id: str,
        vector_store_id: str,
        *,
        after: str | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> Page[VectorStoreFile]:
        if not vector_store_id:
            raise ValidationError("vector store id is required")
        page = PageRequest.build(limit=limit, order=order, after=after)
        self._require_collection(project_id, vector_store_id)
        return self.file_repo.list_with_pagination(vector_store_id, page)

    def delete_vector_store_file(self, project_id: str, vector_store_id: str, file_id: str) -> DeletedObject:
        """Remove the file's chunks from the index, then its row, then its counters.

        An ``in_progress`` row goes before its chunks: a job that finishes
        concurrently then finds no row to settle and removes what it inserted.
        """
        self._require_ids(vector_store_id, file_id)
        collection = self._require_collection(project_id, vector_store_id)
        record = self.file_repo.get(vector_store_id, file_id)
        if record is None:
            raise NotFoundError(f"file {file_id!r} not found in vector store {vector_store_id!r}")

        if record.status == FILE_STATUS_IN_PROGRESS:
            if self._worker is not None:
                self._worker.cancel(vector_store_id, file_id)
            deleted = self._delete_row(vector_store_id, file_id)
            self.pipeline.delete_file(collection.vector_store_id, file_id)
        else:
            self.pipeline.delete_file(collection.vector_store_id, file_id)
            deleted = self._delete_row(vector_store_id, file_id)
        if deleted is None:
            raise NotFoundError(f"file {file_id!r} not found in vector store {vector_store_id!r}")

        self._adjust_counters(project_id, vector_store_id, deleted.status, -1, -deleted.usage_bytes)
        logger.info("Deleted file %s from vector store %s", file_id, vector_store_id)
        return DeletedObject(id=file_id, object=VECTOR_STORE_FILE_OBJECT)

    def cancel_vector_store_file(self, project_id: str, vector_store_id: str, file_id: str) -> VectorStoreFile:
        record = self.get_vector_store_file(project_id, vector_store_id, file_id)
        if record.status == FILE_STATUS_CANCELLED:
            return record
        if record.is_terminal:
            raise ValidationError(f"file {file_id!r} is already {record.status}")
        if self._worker is not None and self._worker.cancel(vector_store_id, file_id):
            return record
        # No queued job owns this row (a synchronous ingest or a restarted process); settle it here.
        return self.transition_file_status(vector_store_id, file_id, FILE_STATUS_CANCELLED)

    def transition_file_status(
        self,
        vector_store_id: str,
        file_id: str,
        target: str,
        *,
        usage_bytes: int = 0,
        last_error_code: str = LAST_ERROR_CODE_NONE,
        last_error_message: str = "",
    ) -> VectorStoreFile:
        """Move an ``in_progress`` file to a terminal status and its parent counters with it.

        Repeating the status a file already has is a no-op.
        """
        with transaction(self.db_path) as conn:
            record = self.file_repo.get(vector_store_id, file_id, conn=conn)
            if record is None:
                raise NotFoundError(f"file {file_id!r} not found in vector store {vector_store_id!r}")
            if not check_file_transition(record.status, target):
                return record
            previous = record.status
            record.status = target
            record.usage_bytes = usage_bytes
            record.last_error_code = last_error_code
            record.last_error_message = last_error_message
            self.file_repo.update(record, conn=conn)

            collection = self.collection_repo.get_by_vector_store_id(record.project_id, vector_store_id, conn=conn)
            if collection is not None:
                now = now_unix()
                collection.file_counts.move(previous, target)
                collection.usage_bytes = max(0, collection.usage_bytes + usage_bytes)
                collection.touch(now)
                collection.refresh_status(now)
                self.collection_repo.update(collection, conn=conn)
        logger.info("File %s in vector store %s moved %s -> %s", file_id, vector_store_id, previous, target)
        return record

    def fail_interrupted_files(self) -> int:
        """Mark rows left ``in_progress`` by a previous process as failed."""
        failed = 0
        for record in self.file_repo.list_by_status(FILE_STATUS_IN_PROGRESS):
            try:
                self.transition_file_status(
                    record.vector_store_id,
                    record.file_id,
                    FILE_STATUS_FAILED,
                    last_error_code=LAST_ERROR_CODE_SERVER_ERROR,
                    last_error_message="Ingestion was interrupted before it finished.",
                )
            except ConcurrentUpdateError:
                logger.warning("Skipped interrupted file %s: concurrent update", record.file_id)
                continue
            failed += 1
        return failed

    def _claim(self, collection: Collection, file_id: str, strategy: ChunkingStrategy) -> VectorStoreFile:
        """Write the ``in_progress`` row and count it; a racing duplicate fails here."""
        record = VectorStoreFile(
            file_id=file_id,
            vector_store_id=collection.vector_store_id,
            project_id=collection.project_id,
            status=FILE_STATUS_IN_PROGRESS,
            chunking_strategy=strategy,
            created_at=now_utc_iso(),
        )
        with transaction(self.db_path) as conn:
            self.file_repo.insert(record, conn=conn)
            current = self.collection_repo.get_by_vector_store_id(
                collection.project_id, collection.vector_store_id, conn=conn
            )
            if current is None:
                raise NotFoundError(f"vector store {collection.vector_store_id!r} not found")
            now = now_unix()
            current.file_counts.bump(FILE_STATUS_IN_PROGRESS)
            current.touch(now)
            current.refresh_status(now)
            self.collection_repo.update(current, conn=conn)
        return record

    def _release(self, record: VectorStoreFile) -> None:
        try:
            self.file_repo.delete(record.vector_store_id, record.file_id)
        except NotFoundError:
            return
        self._adjust_counters(record.project_id, record.vector_store_id, FILE_STATUS_IN_PROGRESS, -1, 0)

    def _delete_row(self, vector_store_id: str, file_id: str) -> VectorStoreFile | None:
        with transaction(self.db_path) as conn:
            record = self.file_repo.get(vector_store_id, file_id, conn=conn)
            if record is not None:
                self.file_repo.delete(vector_store_id, file_id, conn=conn)
        return record

    def _add_file(self, job: IngestionJob, cancellation_check: Callable[[], bool] | None) -> list[str]:
        return self.pipeline.add_file(
            collection_name=job.vector_store_id,
            model_name=job.embedding_model,
            file_id=job.file_id,
            file_name=job.file_name,
            source_path=job.source_path,
            max_chunk_size_tokens=job.chunking_strategy.max_chunk_size_tokens,
            chunk_overlap_tokens=job.chunking_strategy.chunk_overlap_tokens,
            cancellation_check=cancellation_check,
        )

    def _run_background_job(self, job: IngestionJob, cancellation_check: Callable[[], bool]) -> None:
        try:
            texts = self._add_file(job, cancellation_check)
        except IngestionCancelledError as exc:
            self._settle(job, FILE_STATUS_CANCELLED, last_error_message=str(exc))
            return
        except RateLimitedError as exc:
            self._settle(
                job,
                FILE_STATUS_FAILED,
                last_error_code=LAST_ERROR_CODE_RATE_LIMIT_EXCEEDED,
                last_error_message=str(exc),
            )
            return
        except Exception as exc:
            logger.exception("Background ingestion failed: %s", job.file_id)
            self._settle(
                job,
                FILE_STATUS_FAILED,
                last_error_code=LAST_ERROR_CODE_SERVER_ERROR,
                last_error_message=str(exc),
            )
            return
        self._settle(job, FILE_STATUS_COMPLETED, usage_bytes=sum(len(text) for text in texts))

    def _settle(self, job: IngestionJob, target: str, **fields) -> None:
        for attempt in range(1, _TRANSITION_ATTEMPTS + 1):
            try:
                self.transition_file_status(job.vector_store_id, job.file_id, target, **fields)
                return
            except ConcurrentUpdateError:
                logger.debug("Retrying status write for %s (attempt %d)", job.file_id, attempt)
            except NotFoundError:
                logger.info("File %s was deleted while ingesting; removing its chunks", job.file_id)
                self.pipeline.delete_file(job.vector_store_id, job.file_id)
                return
        logger.warning("Gave up writing status %s for file %s", target, job.file_id)

    def _adjust_counters(
        self,
        project_id: str,
        vector_store_id: str,
        status: str,
        delta: int,
        usage_delta: int,
    ) -> None:
        collection = self.collection_repo.get_by_vector_store_id(project_id, vector_store_id)
        if collection is None:
            return
        now = now_unix()
        collection.file_counts.bump(status, delta)
        collection.usage_bytes = max(0, collection.usage_bytes + usage_delta)
        collection.touch(now)
        collection.refresh_status(now)
        try:
            self.collection_repo.update(collection)
        except ConcurrentUpdateError:
            logger.warning(
                "File counters of vector store %s are stale: concurrent update (not retried)",
                vector_store_id,
            )

    def _require_collection(self, project_id: str, vector_store_id: str) -> Collection:
        collection = self.collection_repo.get_by_vector_store_id(project_id, vector_store_id)
        if collection is None:
            raise NotFoundError(f"vector store {vector_store_id!r} not found")
        return collection

    @staticmethod
    def _require_ids(vector_store_id: str, file_id: str) -> None:
        if not vector_store_id:
            raise ValidationError("vector store id is required")
        if not file_id:
            raise ValidationError("file id is required")
