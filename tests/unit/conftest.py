from __future__ import annotations

import math
from pathlib import Path

import pytest

from vector_store_manager.application.bootstrap import Services, build_services
from vector_store_manager.core.config import AppConfig, load_paths
from vector_store_manager.core.errors import InternalError, NotFoundError, ValidationError
from vector_store_manager.core.ids import stable_int64

FAKE_MODEL = "fake-model"
FAKE_DIM = 16


class _FakeEmbedder:
    """Character histogram embeddings: identical texts score 1.0."""

    def __init__(self, dim: int = FAKE_DIM) -> None:
        self.dim = dim
        self.ensured: list[str] = []
        self.embed_calls = 0
        self.fail_with: Exception | None = None

    def ensure_model(self, name: str) -> None:
        self.ensured.append(name)

    def embed(self, model: str, text: str) -> list[float]:
        self.embed_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        vector = [0.0] * self.dim
        for char in text:
            vector[ord(char) % self.dim] += 1.0
        return vector

    def dimension(self, model: str) -> int:
        if model != FAKE_MODEL:
            raise ValidationError(f"unknown model {model!r}")
        return self.dim


class _FakeIndex:
    def __init__(self) -> None:
        self.collections: dict[str, list[tuple[str, str, list[float]]]] = {}
        self.dims: dict[str, int] = {}
        self.aliases: dict[str, str] = {}
        self.fail_delete_collection = False
        self.fail_rename = False
        self.insert_calls = 0

    def create_collection(self, name: str, dim: int, alias: str | None = None) -> int:
        self.collections[name] = []
        self.dims[name] = dim
        if alias:
            self.aliases[alias] = name
        return stable_int64(name)

    def delete_collection(self, name: str) -> None:
        if self.fail_delete_collection:
            raise InternalError(f"delete collection {name!r}: index unavailable")
        self.collections.pop(name, None)
        self.aliases = {a: c for a, c in self.aliases.items() if c != name}

    def rename_collection(self, old_alias: str, new_alias: str) -> None:
        if self.fail_rename:
            raise InternalError("rename collection: index unavailable")
        self.aliases[new_alias] = self.aliases.pop(old_alias)

    def insert_documents(self, name, file_ids, texts, vectors) -> None:
        if not (len(file_ids) == len(texts) == len(vectors)):
            raise ValidationError("length mismatch")
        if name not in self.collections:
            raise NotFoundError(f"collection {name!r} not found")
        self.insert_calls += 1
        self.collections[name].extend(zip(file_ids, texts, vectors))

    def delete_documents(self, name: str, file_id: str) -> None:
        self.collections[name] = [row for row in self.collections.get(name, []) if row[0] != file_id]

    def search(self, name: str, vector: list[float], k: int) -> list[str]:
        def cosine(other: list[float]) -> float:
            dot = sum(a * b for a, b in zip(vector, other))
            norm = math.sqrt(sum(a * a for a in vector)) * math.sqrt(sum(b * b for b in other))
            return dot / norm if norm else 0.0

        rows = sorted(self.collections.get(name, []), key=lambda row: cosine(row[2]), reverse=True)
        return [text for _, text, _ in rows[:k]]

    def list_collections(self) -> list[str]:
        return sorted(self.collections)


class _LineSplitter:
    """Every non-empty line is one chunk."""

    def split(self, content: Path, file_type: str, chunk_size_chars: int, overlap_chars: int) -> list[str]:
        return [line for line in content.read_text(encoding="utf-8").splitlines() if line.strip()]


@pytest.fixture
def fake_index() -> _FakeIndex:
    return _FakeIndex()


@pytest.fixture
def fake_embedder() -> _FakeEmbedder:
    return _FakeEmbedder()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(paths=load_paths(tmp_path / "proj"), embedding_model=FAKE_MODEL)


@pytest.fixture
def services(config: AppConfig, fake_index: _FakeIndex, fake_embedder: _FakeEmbedder):
    built = build_services(
        config,
        vector_index=fake_index,
        embedding_service=fake_embedder,
        splitter=_LineSplitter(),
    )
    yield built
    built.shutdown()


@pytest.fixture
def register_text(services: Services, tmp_path: Path):
    """Register a text file and return its file id."""

    def _register(text: str, name: str = "notes.txt") -> str:
        source = tmp_path / name
        source.write_text(text, encoding="utf-8")
        return services.file_registry.register_file(source).source_file.id

    return _register
