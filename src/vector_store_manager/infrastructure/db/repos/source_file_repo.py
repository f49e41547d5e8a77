from __future__ import annotations

from pathlib import Path

from vector_store_manager.domain.models.source_file import SourceFile
from vector_store_manager.infrastructure.db.sqlite import get_connection, transaction


class SourceFileRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, source_file: SourceFile) -> None:
        with transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO source_files (
                    id,
                    digest_sha256,
                    filename,
                    media_type,
                    archived_relpath,
                    size_bytes,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source_file.id,
                    source_file.digest_sha256,
                    source_file.filename,
                    source_file.media_type,
                    source_file.archived_relpath,
                    source_file.size_bytes,
                    source_file.created_at,
                ),
            )

    def get_by_id(self, file_id: str) -> SourceFile | None:
        return self._get_one("SELECT * FROM source_files WHERE id = ?", (file_id,))

    def get_by_digest(self, digest_sha256: str) -> SourceFile | None:
        return self._get_one("SELECT * FROM source_files WHERE digest_sha256 = ?", (digest_sha256,))

    def list(self, limit: int = 100) -> list[SourceFile]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM source_files
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_model(row) for row in rows]

    def _get_one(self, sql: str, params: tuple) -> SourceFile | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(sql, params).fetchone()
        finally:
            conn.close()
        return self._to_model(row) if row else None

    @staticmethod
    def _to_model(row) -> SourceFile:
        return SourceFile(
            id=row["id"],
            digest_sha256=row["digest_sha256"],
            filename=row["filename"],
            media_type=row["media_type"],
            archived_relpath=row["archived_relpath"],
            size_bytes=row["size_bytes"],
            created_at=row["created_at"],
        )
