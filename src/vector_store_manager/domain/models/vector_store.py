from __future__ import annotations

from dataclasses import dataclass, field

from vector_store_manager.core.time import iso_to_unix

COLLECTION_STATUS_IN_PROGRESS = "in_progress"
COLLECTION_STATUS_COMPLETED = "completed"
COLLECTION_STATUS_EXPIRED = "expired"

EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT = "last_active_at"

SECONDS_PER_DAY = 86_400

VECTOR_STORE_OBJECT = "vector_store"


@dataclass(slots=True)
class ExpiresAfter:
    anchor: str
    days: int


@dataclass(slots=True)
class FileCounts:
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0

    def bump(self, status: str, delta: int = 1) -> None:
        setattr(self, status, max(0, getattr(self, status) + delta))
        self.total = max(0, self.total + delta)

    def move(self, from_status: str, to_status: str) -> None:
        if from_status == to_status:
            return
        setattr(self, from_status, max(0, getattr(self, from_status) - 1))
        setattr(self, to_status, getattr(self, to_status) + 1)


@dataclass(slots=True)
class Collection:
    vector_store_id: str
    collection_id: int
    project_id: str
    name: str
    status: str
    embedding_model: str
    embedding_dimensions: int
    created_at: str
    last_active_at: int
    file_counts: FileCounts = field(default_factory=FileCounts)
    usage_bytes: int = 0
    anchor: str = ""
    expires_after_days: int = 0
    expires_at: int = 0
    version: int = 0
    row_id: int | None = None

    @property
    def expires_after(self) -> ExpiresAfter | None:
        if not self.anchor:
            return None
        return ExpiresAfter(anchor=self.anchor, days=self.expires_after_days)

    def apply_expires_after(self, expires_after: ExpiresAfter | None) -> None:
        if expires_after is None:
            self.anchor = ""
            self.expires_after_days = 0
            self.expires_at = 0
            return
        self.anchor = expires_after.anchor
        self.expires_after_days = expires_after.days
        self.recompute_expires_at()

    def recompute_expires_at(self) -> None:
        if self.anchor == EXPIRES_AFTER_ANCHOR_LAST_ACTIVE_AT and self.expires_after_days > 0:
            self.expires_at = self.last_active_at + self.expires_after_days * SECONDS_PER_DAY
        else:
            self.expires_at = 0

    def touch(self, now: int) -> None:
        self.last_active_at = now
        self.recompute_expires_at()

    def is_expired(self, now: int) -> bool:
        return self.expires_at > 0 and self.expires_at <= now

    def refresh_status(self, now: int) -> None:
        if self.status == COLLECTION_STATUS_EXPIRED or self.is_expired(now):
            self.status = COLLECTION_STATUS_EXPIRED
        elif self.file_counts.in_progress > 0:
            self.status = COLLECTION_STATUS_IN_PROGRESS
        else:
            self.status = COLLECTION_STATUS_COMPLETED


@dataclass(slots=True)
class CollectionMetadata:
    vector_store_id: str
    key: str
    value: str
    version: int = 0
    row_id: int | None = None


@dataclass(slots=True)
class VectorStore:
    """A collection together with its metadata, as callers see it."""

    collection: Collection
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.collection.vector_store_id

    def to_dict(self) -> dict:
        c = self.collection
        expires_after = None
        if c.expires_after is not None:
            expires_after = {"anchor": c.anchor, "days": c.expires_after_days}
        return {
            "id": c.vector_store_id,
            "object": VECTOR_STORE_OBJECT,
            "created_at": iso_to_unix(c.created_at),
            "name": c.name,
            "usage_bytes": c.usage_bytes,
            "file_counts": {
                "in_progress": c.file_counts.in_progress,
                "completed": c.file_counts.completed,
                "failed": c.file_counts.failed,
                "cancelled": c.file_counts.cancelled,
                "total": c.file_counts.total,
            },
            "status": c.status,
            "expires_after": expires_after,
            "expires_at": c.expires_at or None,
            "last_active_at": c.last_active_at,
            "metadata": dict(self.metadata),
        }
