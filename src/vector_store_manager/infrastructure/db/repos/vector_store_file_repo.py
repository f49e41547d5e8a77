from __future__ import annotations

import sqlite3
from pathlib import Path

from vector_store_manager.core.errors import AlreadyExistsError, ConcurrentUpdateError, NotFoundError
from vector_store_manager.domain.models.page import Page
from vector_store_manager.domain.models.vector_store_file import (
    CHUNKING_STRATEGY_STATIC,
    AutoChunkingStrategy,
    StaticChunkingStrategy,
    VectorStoreFile,
)
from vector_store_manager.infrastructure.db.pagination import Cursor, PageRequest, fetch_page
from vector_store_manager.infrastructure.db.sqlite import get_connection, is_foreign_key_violation, use_connection


class VectorStoreFileRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, record: VectorStoreFile, *, conn: sqlite3.Connection | None = None) -> VectorStoreFile:
        strategy = record.chunking_strategy
        try:
            with use_connection(self.db_path, conn) as c:
                cursor = c.execute(
                    """
                    INSERT INTO vector_store_files (
                        file_id,
                        vector_store_id,
                        project_id,
                        usage_bytes,
                        status,
                        last_error_code,
                        last_error_message,
                        chunking_strategy_type,
                        max_chunk_size_tokens,
                        chunk_overlap_tokens,
                        version,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.file_id,
                        record.vector_store_id,
                        record.project_id,
                        record.usage_bytes,
                        record.status,
                        record.last_error_code,
                        record.last_error_message,
                        strategy.type,
                        strategy.max_chunk_size_tokens,
                        strategy.chunk_overlap_tokens,
                        record.version,
                        record.created_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if is_foreign_key_violation(exc):
                raise NotFoundError(f"vector store {record.vector_store_id!r} not found") from exc
            raise AlreadyExistsError(
                f"file {record.file_id!r} already exists in vector store {record.vector_store_id!r}"
            ) from exc
        record.row_id = int(cursor.lastrowid)
        return record

    def get(
        self,
        vector_store_id: str,
        file_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> VectorStoreFile | None:
        sql = "SELECT * FROM vector_store_files WHERE vector_store_id = ? AND file_id = ?"
        if conn is not None:
            row = conn.execute(sql, (vector_store_id, file_id)).fetchone()
        else:
            own = get_connection(self.db_path)
            try:
                row = own.execute(sql, (vector_store_id, file_id)).fetchone()
            finally:
                own.close()
        return self._to_model(row) if row else None

    def list_by_status(self, status: str) -> list[VectorStoreFile]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM vector_store_files WHERE status = ? ORDER BY id",
                (status,),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_model(row) for row in rows]

    def list_for_vector_store(self, vector_store_id: str) -> list[VectorStoreFile]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM vector_store_files WHERE vector_store_id = ? ORDER BY id",
                (vector_store_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_model(row) for row in rows]

    def list_with_pagination(self, vector_store_id: str, page: PageRequest) -> Page[VectorStoreFile]:
        conn = get_connection(self.db_path)
        try:
            cursor = None
            if page.after:
                row = conn.execute(
                    "SELECT created_at, id FROM vector_store_files WHERE vector_store_id = ? AND file_id = ?",
                    (vector_store_id, page.after),
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"invalid value of after: {page.after!r}")
                cursor = Cursor(created_at=row["created_at"], row_id=int(row["id"]))
            return fetch_page(
                conn,
                base_sql="SELECT * FROM vector_store_files WHERE vector_store_id = ?",
                base_params=(vector_store_id,),
                order=page.order,
                cursor=cursor,
                limit=page.limit,
                to_model=self._to_model,
                external_id=lambda f: f.file_id,
            )
        finally:
            conn.close()

    def update(self, record: VectorStoreFile, *, conn: sqlite3.Connection | None = None) -> VectorStoreFile:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                """
                UPDATE vector_store_files
                SET usage_bytes = ?,
                    status = ?,
                    last_error_code = ?,
                    last_error_message = ?,
                    version = version + 1
                WHERE id = ? AND version = ?
                """,
                (
                    record.usage_bytes,
                    record.status,
                    record.last_error_code,
                    record.last_error_message,
                    record.row_id,
                    record.version,
                ),
            )
        if cursor.rowcount == 0:
            raise ConcurrentUpdateError(
                f"update file {record.vector_store_id}/{record.file_id}: version {record.version} is stale"
            )
        record.version += 1
        return record

    def delete(self, vector_store_id: str, file_id: str, *, conn: sqlite3.Connection | None = None) -> None:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                "DELETE FROM vector_store_files WHERE vector_store_id = ? AND file_id = ?",
                (vector_store_id, file_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"file {file_id!r} not found in vector store {vector_store_id!r}")

    def delete_for_vector_store(self, vector_store_id: str, *, conn: sqlite3.Connection | None = None) -> int:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                "DELETE FROM vector_store_files WHERE vector_store_id = ?",
                (vector_store_id,),
            )
        return int(cursor.rowcount or 0)

    @staticmethod
    def _to_model(row) -> VectorStoreFile:
        if row["chunking_strategy_type"] == CHUNKING_STRATEGY_STATIC:
            strategy = StaticChunkingStrategy(
                max_chunk_size_tokens=int(row["max_chunk_size_tokens"]),
                chunk_overlap_tokens=int(row["chunk_overlap_tokens"]),
            )
        else:
            strategy = AutoChunkingStrategy()
        return VectorStoreFile(
            file_id=row["file_id"],
            vector_store_id=row["vector_store_id"],
            project_id=row["project_id"],
            status=row["status"],
            chunking_strategy=strategy,
            created_at=row["created_at"],
            usage_bytes=int(row["usage_bytes"]),
            last_error_code=row["last_error_code"],
            last_error_message=row["last_error_message"],
            version=int(row["version"]),
            row_id=int(row["id"]),
        )
