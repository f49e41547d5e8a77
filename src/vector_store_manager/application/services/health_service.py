from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from vector_store_manager.application.ports import VectorIndex
from vector_store_manager.core.hashing import compute_file_digest
from vector_store_manager.domain.models.vector_store_file import FILE_STATUS_IN_PROGRESS
from vector_store_manager.infrastructure.db.repos.collection_repo import CollectionRepo
from vector_store_manager.infrastructure.db.repos.source_file_repo import SourceFileRepo
from vector_store_manager.infrastructure.db.repos.vector_store_file_repo import VectorStoreFileRepo
from vector_store_manager.infrastructure.db.sqlite import get_connection

logger = logging.getLogger(__name__)

ORPHAN_GRACE_SECONDS = 10.0


@dataclass(slots=True)
class DoctorIssue:
    check: str
    level: str
    message: str


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks_run: int
    issues: list[DoctorIssue]
    db_runtime: dict[str, object]
    orphaned_collections: list[str]


class HealthService:
    """Consistency checks across SQLite, the archive and the vector index."""

    def __init__(self, db_path: Path, archive_dir: Path, vector_index: VectorIndex) -> None:
        self.db_path = db_path
        self.archive_dir = archive_dir
        self.vector_index = vector_index

    def run_doctor(self) -> DoctorReport:
        issues: list[DoctorIssue] = []
        checks_run = 0

        checks_run += 1
        db_runtime = self._check_db_runtime(issues)

        # Every registered file has an archive object with a matching digest.
        checks_run += 1
        for source_file in SourceFileRepo(self.db_path).list(limit=1_000_000):
            path = self.archive_dir / source_file.archived_relpath
            if not path.exists():
                issues.append(
                    DoctorIssue(
                        check="archive_integrity",
                        level="error",
                        message=f"Missing archive file for {source_file.id}: {path}",
                    )
                )
            elif compute_file_digest(path) != source_file.digest_sha256:
                issues.append(
                    DoctorIssue(
                        check="archive_integrity",
                        level="error",
                        message=f"Digest mismatch for {source_file.id}: {path}",
                    )
                )

        # Local and index collections agree.
        checks_run += 1
        collections = CollectionRepo(self.db_path).list_all()
        local_ids = {c.vector_store_id for c in collections}
        orphaned: list[str] = []
        try:
            remote_ids = set(self.vector_index.list_collections())
        except Exception as exc:
            issues.append(
                DoctorIssue(
                    check="vector_index",
                    level="warning",
                    message=f"Vector index unreachable: {exc}",
                )
            )
        else:
            orphaned = sorted(remote_ids - local_ids)
            for name in orphaned:
                issues.append(
                    DoctorIssue(
                        check="vector_index",
                        level="warning",
                        message=f"Index collection {name} has no vector store (left by a failed create or delete).",
                    )
                )
            for missing in sorted(local_ids - remote_ids):
                issues.append(
                    DoctorIssue(
                        check="vector_index",
                        level="error",
                        message=f"Vector store {missing} has no index collection.",
                    )
                )

        # Counters match file rows; nothing is stuck in progress.
        checks_run += 1
        file_repo = VectorStoreFileRepo(self.db_path)
        for collection in collections:
            rows = file_repo.list_for_vector_store(collection.vector_store_id)
            if len(rows) != collection.file_counts.total:
                issues.append(
                    DoctorIssue(
                        check="file_counts",
                        level="warning",
                        message=(
                            f"Vector store {collection.vector_store_id} counts {collection.file_counts.total} "
                            f"file(s) but has {len(rows)} row(s)."
                        ),
                    )
                )
        stuck = file_repo.list_by_status(FILE_STATUS_IN_PROGRESS)
        if stuck:
            issues.append(
                DoctorIssue(
                    check="file_status",
                    level="warning",
                    message=f"{len(stuck)} file(s) are still in progress; run `vsm serve` or cancel them.",
                )
            )

        return DoctorReport(
            ok=not any(i.level == "error" for i in issues),
            checks_run=checks_run,
            issues=issues,
            db_runtime=db_runtime,
            orphaned_collections=orphaned,
        )

    def prune_orphaned_collections(
        self,
        grace_seconds: float = ORPHAN_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> list[str]:
        """Delete index collections that still have no vector store after ``grace_seconds``.

        A create in flight owns its index collection before its local row
        commits, so only collections orphaned on both looks are deleted.
        """
        candidates = self._orphaned_collections()
        if candidates and grace_seconds > 0:
            sleep(grace_seconds)
        confirmed = set(self._orphaned_collections()) if candidates else set()

        pruned: list[str] = []
        for name in candidates:
            if name not in confirmed:
                logger.info("Kept index collection %s: its vector store appeared", name)
                continue
            self.vector_index.delete_collection(name)
            logger.info("Pruned orphaned index collection %s", name)
            pruned.append(name)
        return pruned

    def _orphaned_collections(self) -> list[str]:
        local_ids = {c.vector_store_id for c in CollectionRepo(self.db_path).list_all()}
        return sorted(set(self.vector_index.list_collections()) - local_ids)

    def _check_db_runtime(self, issues: list[DoctorIssue]) -> dict[str, object]:
        conn = get_connection(self.db_path)
        try:
            journal_mode = str(conn.execute("PRAGMA journal_mode;").fetchone()[0]).lower()
            busy_timeout_ms = int(conn.execute("PRAGMA busy_timeout;").fetchone()[0])
            foreign_keys = int(conn.execute("PRAGMA foreign_keys;").fetchone()[0])
        finally:
            conn.close()

        if journal_mode != "wal":
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message=f"SQLite journal_mode is '{journal_mode}', expected 'wal' for concurrent access.",
                )
            )
        if foreign_keys != 1:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="error",
                    message="SQLite foreign_keys pragma is disabled.",
                )
            )
        if busy_timeout_ms < 1_000:
            issues.append(
                DoctorIssue(
                    check="db_runtime",
                    level="warning",
                    message=f"SQLite busy_timeout is low ({busy_timeout_ms}ms); consider >= 1000ms.",
                )
            )
        return {
            "journal_mode": journal_mode,
            "busy_timeout_ms": busy_timeout_ms,
            "foreign_keys": bool(foreign_keys),
        }
