from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from vector_store_manager.application.ports import EmbeddingService, FileRegistry, VectorIndex
from vector_store_manager.application.services.vector_store_file_service import (
    VectorStoreFileService,
    require_registered_file,
    resolve_chunking_strategy,
)
from vector_store_manager.core.errors import (
    AlreadyExistsError,
    ConcurrentUpdateError,
    NotFoundError,
    PartialIngestionError,
    ValidationError,
    VSMError,
)
from vector_store_manager.core.ids import new_vector_store_id
from vector_store_manager.core.time import now_unix, now_utc_iso
from vector_store_manager.domain.models.page import DeletedObject, Page
from vector_store_manager.domain.models.vector_store import (
    COLLECTION_STATUS_EXPIRED,
    COLLECTION_STATUS_IN_PROGRESS,
    EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT,
    VECTOR_STORE_OBJECT,
    Collection,
    CollectionMetadata,
    ExpiresAfter,
    VectorStore,
)
from vector_store_manager.domain.models.vector_store_file import ChunkingStrategy
from vector_store_manager.infrastructure.db.pagination import PageRequest
from vector_store_manager.infrastructure.db.repos.collection_metadata_repo import CollectionMetadataRepo
from vector_store_manager.infrastructure.db.repos.collection_repo import CollectionRepo
from vector_store_manager.infrastructure.db.repos.vector_store_file_repo import VectorStoreFileRepo
from vector_store_manager.infrastructure.db.sqlite import transaction

logger = logging.getLogger(__name__)

MAX_METADATA_ENTRIES = 16
MAX_METADATA_KEY_LENGTH = 64
MAX_METADATA_VALUE_LENGTH = 512


@dataclass(slots=True)
class FileIngestionFailure:
    file_id: str
    message: str


@dataclass(slots=True)
class CreateVectorStoreResult:
    """Outcome of a create call.

    ``vector_store`` and ``error`` are independent: a store can be created
    while some of its initial files failed to ingest.
    """

    vector_store: VectorStore | None
    error: PartialIngestionError | None = None


def validate_metadata(metadata: dict[str, str] | None) -> dict[str, str]:
    if metadata is None:
        return {}
    if len(metadata) > MAX_METADATA_ENTRIES:
        raise ValidationError(f"No more than {MAX_METADATA_ENTRIES} metadata entries are allowed")
    out: dict[str, str] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError("Metadata keys and values must be strings")
        if len(key) > MAX_METADATA_KEY_LENGTH:
            raise ValidationError(
                f"Metadata key {key!r} is too long, max allowed is {MAX_METADATA_KEY_LENGTH}"
            )
        if len(value) > MAX_METADATA_VALUE_LENGTH:
            raise ValidationError(
                f"Metadata value for key {key!r} is too long, max allowed is {MAX_METADATA_VALUE_LENGTH}"
            )
        out[key] = value
    return out


def parse_expires_after(raw: ExpiresAfter | dict | None) -> ExpiresAfter | None:
    if raw is None:
        return None
    if isinstance(raw, dict):
        try:
            days = int(raw.get("days") or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError("expires_after.days must be an integer") from exc
        raw = ExpiresAfter(anchor=str(raw.get("anchor") or ""), days=days)
    anchor = raw.anchor or EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT
    if anchor != EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT:
        raise ValidationError(f"expires_after.anchor must be {EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT!r}")
    if raw.days <= 0:
        raise ValidationError("expires_after.days must be greater than 0")
    return ExpiresAfter(anchor=anchor, days=raw.days)


def index_alias(project_id: str, name: str) -> str:
    return f"{project_id}.{name}"


class VectorStoreService:
    def __init__(
        self,
        *,
        db_path: Path,
        collection_repo: CollectionRepo,
        metadata_repo: CollectionMetadataRepo,
        file_repo: VectorStoreFileRepo,
        vector_index: VectorIndex,
        embedding_service: EmbeddingService,
        file_registry: FileRegistry,
        file_service: VectorStoreFileService,
        embedding_model: str,
    ) -> None:
        self.db_path = db_path
        self.collection_repo = collection_repo
        self.metadata_repo = metadata_repo
        self.file_repo = file_repo
        self.vector_index = vector_index
        self.embedding_service = embedding_service
        self.file_registry = file_registry
        self.file_service = file_service
        self.embedding_model = embedding_model

    def create_vector_store(
        self,
        project_id: str,
        name: str,
        *,
        file_ids: list[str] | tuple[str, ...] = (),
        chunking_strategy: ChunkingStrategy | dict | None = None,
        expires_after: ExpiresAfter | dict | None = None,
        metadata: dict[str, str] | None = None,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> CreateVectorStoreResult:
        """Create the index collection, then the local rows, then ingest files.

        A failure after the index collection exists leaves it behind; ``doctor``
        reports such collections.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        clean_metadata = validate_metadata(metadata)
        policy = parse_expires_after(expires_after)
        strategy = resolve_chunking_strategy(chunking_strategy)
        for file_id in file_ids:
            require_registered_file(self.file_registry, file_id)

        if self.collection_repo.get_by_name(project_id, name) is not None:
            raise AlreadyExistsError(f"vector store {name!r} already exists")

        vector_store_id = new_vector_store_id()
        dimensions = self.embedding_service.dimension(self.embedding_model)
        collection_id = self.vector_index.create_collection(
            vector_store_id,
            dimensions,
            alias=index_alias(project_id, name),
        )

        now = now_unix()
        collection = Collection(
            vector_store_id=vector_store_id,
            collection_id=collection_id,
            project_id=project_id,
            name=name,
            status=COLLECTION_STATUS_IN_PROGRESS,
            embedding_model=self.embedding_model,
            embedding_dimensions=dimensions,
            created_at=now_utc_iso(),
            last_active_at=now,
        )
        collection.apply_expires_after(policy)
        try:
            with transaction(self.db_path) as conn:
                self.collection_repo.insert(collection, conn=conn)
                for key, value in clean_metadata.items():
                    self.metadata_repo.insert(
                        CollectionMetadata(vector_store_id=vector_store_id, key=key, value=value),
                        conn=conn,
                    )
        except VSMError:
            logger.warning("Index collection %s left behind: local create failed", vector_store_id)
            raise
        logger.info("Created vector store %s (%s) in project %s", vector_store_id, name, project_id)

        failures: list[FileIngestionFailure] = []
        for file_id in file_ids:
            try:
                self.file_service.create_vector_store_file(
                    project_id,
                    vector_store_id,
                    file_id,
                    strategy,
                    cancellation_check=cancellation_check,
                )
            except VSMError as exc:
                logger.warning("File %s failed to ingest into %s: %s", file_id, vector_store_id, exc)
                failures.append(FileIngestionFailure(file_id=file_id, message=str(exc)))

        vector_store = self._finish_create(project_id, vector_store_id)
        error = PartialIngestionError(failures) if failures else None
        return CreateVectorStoreResult(vector_store=vector_store, error=error)

    def get_vector_store(self, project_id: str, vector_store_id: str) -> VectorStore:
        if not vector_store_id:
            raise ValidationError("id is required")
        collection = self._require_collection(project_id, vector_store_id)
        return self._to_vector_store(collection)

    def list_vector_stores(
        self,
        project_id: str,
        *,
        after: str | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> Page[VectorStore]:
        page = PageRequest.build(limit=limit, order=order, after=after)
        collections = self.collection_repo.list_with_pagination(project_id, page)
        return Page(
            data=[self._to_vector_store(c) for c in collections.data],
            first_id=collections.first_id,
            last_id=collections.last_id,
            has_more=collections.has_more,
        )

    def update_vector_store(
        self,
        project_id: str,
        vector_store_id: str,
        *,
        name: str | None = None,
        expires_after: ExpiresAfter | dict | None = None,
        metadata: dict[str, str] | None = None,
        expected_version: int | None = None,
    ) -> VectorStore:
        """Apply a partial update in one local transaction.

        ``metadata`` replaces the stored map when given (``{}`` clears it).
        The index alias is renamed before commit; a failed rename rolls the
        local changes back.
        """
        if not vector_store_id:
            raise ValidationError("id is required")
        clean_metadata = validate_metadata(metadata) if metadata is not None else None
        policy = parse_expires_after(expires_after)
        new_name = (name or "").strip()

        with transaction(self.db_path) as conn:
            collection = self.collection_repo.get_by_vector_store_id(project_id, vector_store_id, conn=conn)
            if collection is None:
                raise NotFoundError(f"vector store {vector_store_id!r} not found")
            if expected_version is not None and expected_version != collection.version:
                raise ConcurrentUpdateError(
                    f"update vector store {vector_store_id}: version {expected_version} is stale"
                )

            if clean_metadata is not None:
                self._reconcile_metadata(vector_store_id, clean_metadata, conn)

            old_name = collection.name
            renamed = bool(new_name) and new_name != old_name
            if renamed:
                collection.name = new_name
            if policy is not None:
                collection.apply_expires_after(policy)
            self.collection_repo.update(collection, conn=conn)

            if renamed:
                self.vector_index.rename_collection(
                    index_alias(project_id, old_name),
                    index_alias(project_id, new_name),
                )
            rows = self.metadata_repo.list_for_vector_store(vector_store_id, conn=conn)
        if renamed:
            logger.info("Renamed vector store %s: %s -> %s", vector_store_id, old_name, new_name)
        return VectorStore(collection=collection, metadata={row.key: row.value for row in rows})

    def delete_vector_store(self, project_id: str, vector_store_id: str) -> DeletedObject:
        """Remove local rows atomically, then ask the index to drop the collection.

        An index failure is logged and does not bring the local rows back.
        """
        if not vector_store_id:
            raise ValidationError("id is required")
        with transaction(self.db_path) as conn:
            collection = self.collection_repo.get_by_vector_store_id(project_id, vector_store_id, conn=conn)
            if collection is None:
                raise NotFoundError(f"vector store {vector_store_id!r} not found")
            self.file_repo.delete_for_vector_store(vector_store_id, conn=conn)
            self.metadata_repo.delete_for_vector_store(vector_store_id, conn=conn)
            self.collection_repo.delete(project_id, vector_store_id, conn=conn)

        try:
            self.vector_index.delete_collection(vector_store_id)
        except Exception as exc:
            logger.warning("Index collection %s left behind after delete: %s", vector_store_id, exc)
        logger.info("Deleted vector store %s", vector_store_id)
        return DeletedObject(id=vector_store_id, object=VECTOR_STORE_OBJECT)

    def expire_vector_stores(self, project_id: str | None = None, now: int | None = None) -> int:
        """Mark stores whose ``expires_at`` has passed as expired; returns how many changed."""
        now = now_unix() if now is None else now
        expired = 0
        for collection in self.collection_repo.list_all(project_id):
            if collection.status == COLLECTION_STATUS_EXPIRED or not collection.is_expired(now):
                continue
            collection.status = COLLECTION_STATUS_EXPIRED
            try:
                self.collection_repo.update(collection)
            except ConcurrentUpdateError:
                logger.warning("Skipped expiring %s: concurrent update", collection.vector_store_id)
                continue
            expired += 1
            logger.info("Vector store %s expired", collection.vector_store_id)
        return expired

    def touch(self, vector_store_id: str) -> None:
        """Record activity on a store so its expiry moves forward."""
        collection = self.collection_repo.find_by_vector_store_id(vector_store_id)
        if collection is None or collection.status == COLLECTION_STATUS_EXPIRED:
            return
        collection.touch(now_unix())
        try:
            self.collection_repo.update(collection)
        except ConcurrentUpdateError:
            logger.debug("Skipped activity update of %s: concurrent update", vector_store_id)

    def _finish_create(self, project_id: str, vector_store_id: str) -> VectorStore:
        collection = self._require_collection(project_id, vector_store_id)
        before = collection.status
        collection.refresh_status(now_unix())
        if collection.status != before:
            try:
                self.collection_repo.update(collection)
            except ConcurrentUpdateError:
                logger.warning("Status of vector store %s is stale: concurrent update", vector_store_id)
                collection = self._require_collection(project_id, vector_store_id)
        return self._to_vector_store(collection)

    def _reconcile_metadata(self, vector_store_id: str, desired: dict[str, str], conn) -> None:
        current = {row.key: row for row in self.metadata_repo.list_for_vector_store(vector_store_id, conn=conn)}
        for key, value in desired.items():
            found = current.get(key)
            if found is None:
                self.metadata_repo.insert(
                    CollectionMetadata(vector_store_id=vector_store_id, key=key, value=value),
                    conn=conn,
                )
            elif found.value != value:
                found.value = value
                self.metadata_repo.update(found, conn=conn)
        for key in current:
            if key not in desired:
                self.metadata_repo.delete(vector_store_id, key, conn=conn)

    def _require_collection(self, project_id: str, vector_store_id: str) -> Collection:
        collection = self.collection_repo.get_by_vector_store_id(project_id, vector_store_id)
        if collection is None:
            raise NotFoundError(f"vector store {vector_store_id!r} not found")
        return collection

    def _to_vector_store(self, collection: Collection) -> VectorStore:
        rows = self.metadata_repo.list_for_vector_store(collection.vector_store_id)
        return VectorStore(collection=collection, metadata={row.key: row.value for row in rows})
