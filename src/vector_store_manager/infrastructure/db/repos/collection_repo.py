from __future__ import annotations

import sqlite3
from pathlib import Path

from vector_store_manager.core.errors import AlreadyExistsError, ConcurrentUpdateError, NotFoundError
from vector_store_manager.domain.models.page import Page
from vector_store_manager.domain.models.vector_store import Collection, FileCounts
from vector_store_manager.infrastructure.db.pagination import Cursor, PageRequest, fetch_page
from vector_store_manager.infrastructure.db.sqlite import get_connection, use_connection


class CollectionRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, collection: Collection, *, conn: sqlite3.Connection | None = None) -> Collection:
        try:
            with use_connection(self.db_path, conn) as c:
                cursor = c.execute(
                    """
                    INSERT INTO collections (
                        vector_store_id,
                        collection_id,
                        project_id,
                        name,
                        usage_bytes,
                        file_counts_in_progress,
                        file_counts_completed,
                        file_counts_failed,
                        file_counts_cancelled,
                        file_counts_total,
                        status,
                        anchor,
                        expires_after_days,
                        expires_at,
                        last_active_at,
                        embedding_model,
                        embedding_dimensions,
                        version,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        collection.vector_store_id,
                        collection.collection_id,
                        collection.project_id,
                        collection.name,
                        collection.usage_bytes,
                        collection.file_counts.in_progress,
                        collection.file_counts.completed,
                        collection.file_counts.failed,
                        collection.file_counts.cancelled,
                        collection.file_counts.total,
                        collection.status,
                        collection.anchor,
                        collection.expires_after_days,
                        collection.expires_at,
                        collection.last_active_at,
                        collection.embedding_model,
                        collection.embedding_dimensions,
                        collection.version,
                        collection.created_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise AlreadyExistsError(
                f"vector store {collection.name!r} already exists in project {collection.project_id!r}"
            ) from exc
        collection.row_id = int(cursor.lastrowid)
        return collection

    def get_by_vector_store_id(
        self,
        project_id: str,
        vector_store_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Collection | None:
        return self._get_one(
            "SELECT * FROM collections WHERE project_id = ? AND vector_store_id = ?",
            (project_id, vector_store_id),
            conn=conn,
        )

    def find_by_vector_store_id(self, vector_store_id: str) -> Collection | None:
        return self._get_one(
            "SELECT * FROM collections WHERE vector_store_id = ?",
            (vector_store_id,),
        )

    def get_by_name(self, project_id: str, name: str) -> Collection | None:
        return self._get_one(
            "SELECT * FROM collections WHERE project_id = ? AND name = ?",
            (project_id, name),
        )

    def list_all(self, project_id: str | None = None) -> list[Collection]:
        conn = get_connection(self.db_path)
        try:
            if project_id is None:
                rows = conn.execute("SELECT * FROM collections ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM collections WHERE project_id = ? ORDER BY id",
                    (project_id,),
                ).fetchall()
        finally:
            conn.close()
        return [self._to_model(row) for row in rows]

    def list_with_pagination(self, project_id: str, page: PageRequest) -> Page[Collection]:
        conn = get_connection(self.db_path)
        try:
            cursor = None
            if page.after:
                row = conn.execute(
                    "SELECT created_at, id FROM collections WHERE project_id = ? AND vector_store_id = ?",
                    (project_id, page.after),
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"invalid value of after: {page.after!r}")
                cursor = Cursor(created_at=row["created_at"], row_id=int(row["id"]))
            return fetch_page(
                conn,
                base_sql="SELECT * FROM collections WHERE project_id = ?",
                base_params=(project_id,),
                order=page.order,
                cursor=cursor,
                limit=page.limit,
                to_model=self._to_model,
                external_id=lambda c: c.vector_store_id,
            )
        finally:
            conn.close()

    def update(self, collection: Collection, *, conn: sqlite3.Connection | None = None) -> Collection:
        """Write every mutable column if the stored version still matches."""
        with use_connection(self.db_path, conn) as c:
            try:
                cursor = c.execute(
                    """
                    UPDATE collections
                    SET name = ?,
                        status = ?,
                        usage_bytes = ?,
                        file_counts_in_progress = ?,
                        file_counts_completed = ?,
                        file_counts_failed = ?,
                        file_counts_cancelled = ?,
                        file_counts_total = ?,
                        anchor = ?,
                        expires_after_days = ?,
                        expires_at = ?,
                        last_active_at = ?,
                        version = version + 1
                    WHERE id = ? AND version = ?
                    """,
                    (
                        collection.name,
                        collection.status,
                        collection.usage_bytes,
                        collection.file_counts.in_progress,
                        collection.file_counts.completed,
                        collection.file_counts.failed,
                        collection.file_counts.cancelled,
                        collection.file_counts.total,
                        collection.anchor,
                        collection.expires_after_days,
                        collection.expires_at,
                        collection.last_active_at,
                        collection.row_id,
                        collection.version,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise AlreadyExistsError(
                    f"vector store {collection.name!r} already exists in project {collection.project_id!r}"
                ) from exc
        if cursor.rowcount == 0:
            raise ConcurrentUpdateError(
                f"update collection {collection.vector_store_id}: version {collection.version} is stale"
            )
        collection.version += 1
        return collection

    def delete(self, project_id: str, vector_store_id: str, *, conn: sqlite3.Connection | None = None) -> None:
        with use_connection(self.db_path, conn) as c:
            cursor = c.execute(
                "DELETE FROM collections WHERE project_id = ? AND vector_store_id = ?",
                (project_id, vector_store_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"vector store {vector_store_id!r} not found")

    def _get_one(
        self,
        sql: str,
        params: tuple,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Collection | None:
        if conn is not None:
            row = conn.execute(sql, params).fetchone()
        else:
            own = get_connection(self.db_path)
            try:
                row = own.execute(sql, params).fetchone()
            finally:
                own.close()
        return self._to_model(row) if row else None

    @staticmethod
    def _to_model(row) -> Collection:
        return Collection(
            vector_store_id=row["vector_store_id"],
            collection_id=int(row["collection_id"]),
            project_id=row["project_id"],
            name=row["name"],
            status=row["status"],
            embedding_model=row["embedding_model"],
            embedding_dimensions=int(row["embedding_dimensions"]),
            created_at=row["created_at"],
            last_active_at=int(row["last_active_at"]),
            file_counts=FileCounts(
                in_progress=int(row["file_counts_in_progress"]),
                completed=int(row["file_counts_completed"]),
                failed=int(row["file_counts_failed"]),
                cancelled=int(row["file_counts_cancelled"]),
                total=int(row["file_counts_total"]),
            ),
            usage_bytes=int(row["usage_bytes"]),
            anchor=row["anchor"],
            expires_after_days=int(row["expires_after_days"]),
            expires_at=int(row["expires_at"]),
            version=int(row["version"]),
            row_id=int(row["id"]),
        )
