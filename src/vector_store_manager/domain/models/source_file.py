from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class SourceFile:
    id: str
    digest_sha256: str
    filename: str
    media_type: str
    archived_relpath: str
    size_bytes: int
    created_at: str
