from __future__ import annotations

import sqlite3
from pathlib import Path

from vector_store_manager.core.errors import AlreadyExistsError, ConcurrentUpdateError, NotFoundError
from vector_store_manager.domain.models.vector_store import CollectionMetadata
from vector_store_manager.infrastructure.db.sqlite import get_connection, is_foreign_key_violation, use_connection


class CollectionMetadataRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, metadata: CollectionMetadata, *, conn: sqlite3.Connection | None = None) -> CollectionMetadata:
        try:
            with use_connection(self.db_path, conn) as c:
                cursor = c.execute(
                    """
                    INSERT INTO collection_metadata (vector_store_id, key, value, version)
                    VALUES (?, ?, ?, ?)
                    """,
                    (metadata.vector_store_id, metadata.key, metadata.value, metadata.version),
                )
        except sqlite3.IntegrityError as exc:
            if is_foreign_key_violation(exc):
                raise NotFoundError(f"vector store {metadata.vector_store_id!r} not found") from exc
            raise AlreadyExistsError(
                f"metadata key {metadata.key!r} already exists on vector store {metadata.vector_store_id!r}"
            ) from exc
        metadata.row_id = int(cursor.lastrowid)
        return metadata

    def list_for_vector_store(
        self,
        vector_store_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[CollectionMetadata]:
        sql = "SELECT * FROM collection_metadata WHERE vector_store_id = ? ORDER BY key"
        if conn is not None:
            rows = conn.execute(sql, (vector_store_id,)).fetchall()
        else:
            own = get_connection(self.db_path)
            try:
                rows = own.execute(sql, (vector_store_id,)).fetchall()
            finally:
                own.close()
        return [self._to_model(row) for row in rows]

    def update(self, metadata: CollectionMetadata, *, conn: sqlite3.Connection | None = None) -> CollectionMetadata:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                """
                UPDATE collection_metadata
                SET value = ?, version = version + 1
                WHERE vector_store_id = ? AND key = ? AND version = ?
                """,
                (metadata.value, metadata.vector_store_id, metadata.key, metadata.version),
            )
        if cursor.rowcount == 0:
            raise ConcurrentUpdateError(
                f"update collection metadata {metadata.vector_store_id}/{metadata.key}: "
                f"version {metadata.version} is stale"
            )
        metadata.version += 1
        return metadata

    def delete(self, vector_store_id: str, key: str, *, conn: sqlite3.Connection | None = None) -> None:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                "DELETE FROM collection_metadata WHERE vector_store_id = ? AND key = ?",
                (vector_store_id, key),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"metadata key {key!r} not found on vector store {vector_store_id!r}")

    def delete_for_vector_store(self, vector_store_id: str, *, conn: sqlite3.Connection | None = None) -> int:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                "DELETE FROM collection_metadata WHERE vector_store_id = ?",
                (vector_store_id,),
            )
        return int(cursor.rowcount or 0)

    @staticmethod
    def _to_model(row) -> CollectionMetadata:
        return CollectionMetadata(
            vector_store_id=row["vector_store_id"],
            key=row["key"],
            value=row["value"],
            version=int(row["version"]),
            row_id=int(row["id"]),
        )
