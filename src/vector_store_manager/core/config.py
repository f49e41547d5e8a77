from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from vector_store_manager.core.errors import ConfigurationError


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    vsm_dir: Path
    db_path: Path
    archive_dir: Path
    vector_dir: Path
    qdrant_dir: Path


DEFAULT_VSM_DIRNAME = ".vsm"
DEFAULT_PROJECT_ID = "default"
DEFAULT_EMBEDDING_BACKEND = "ollama"
DEFAULT_EMBEDDING_MODEL = "all-minilm"
DEFAULT_CHARS_PER_TOKEN = 4

EMBEDDING_BACKENDS = ("ollama", "sentence-transformers")


@dataclass(frozen=True)
class AppConfig:
    paths: AppPaths
    default_project_id: str = DEFAULT_PROJECT_ID
    embedding_backend: str = DEFAULT_EMBEDDING_BACKEND
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    ollama_host: str | None = None
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    qdrant_timeout_seconds: float = 10.0
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN
    splitter_extensions: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if self.embedding_backend not in EMBEDDING_BACKENDS:
            raise ConfigurationError(
                f"Unsupported embedding backend {self.embedding_backend!r}; "
                f"expected one of {', '.join(EMBEDDING_BACKENDS)}"
            )
        if not self.embedding_model:
            raise ConfigurationError("An embedding model must be set")
        if not self.default_project_id:
            raise ConfigurationError("A default project id must be set")
        if self.chars_per_token <= 0:
            raise ConfigurationError("chars_per_token must be greater than 0")


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    vsm_home_raw = os.getenv("VSM_HOME")
    if vsm_home_raw:
        vsm_dir = Path(vsm_home_raw).expanduser().resolve()
    else:
        vsm_dir = root / DEFAULT_VSM_DIRNAME

    return AppPaths(
        project_root=root,
        vsm_dir=vsm_dir,
        db_path=vsm_dir / "vsm.db",
        archive_dir=vsm_dir / "archive",
        vector_dir=vsm_dir / "vector",
        qdrant_dir=vsm_dir / "vector" / "qdrant",
    )


def load_config(project_root: Path | None = None) -> AppConfig:
    config = AppConfig(
        paths=load_paths(project_root),
        default_project_id=_read_str_env("VSM_DEFAULT_PROJECT", DEFAULT_PROJECT_ID),
        embedding_backend=_read_str_env("VSM_EMBEDDING_BACKEND", DEFAULT_EMBEDDING_BACKEND).lower(),
        embedding_model=_read_str_env("VSM_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
        ollama_host=_read_optional_env("VSM_OLLAMA_HOST"),
        qdrant_url=_read_optional_env("VSM_QDRANT_URL"),
        qdrant_api_key=_read_optional_env("VSM_QDRANT_API_KEY"),
        qdrant_timeout_seconds=_read_float_env("VSM_QDRANT_TIMEOUT_SECONDS", 10.0),
        chars_per_token=_read_int_env("VSM_CHARS_PER_TOKEN", DEFAULT_CHARS_PER_TOKEN),
        splitter_extensions=_read_mapping_env("VSM_SPLITTER_EXTENSIONS"),
    )
    config.validate()
    return config


def _read_optional_env(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _read_str_env(name: str, default: str) -> str:
    return _read_optional_env(name) or default


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_mapping_env(name: str) -> dict[str, str]:
    """Parse ``.ext=kind,.ext2=kind2`` into an extension map."""
    raw = _read_optional_env(name)
    if raw is None:
        return {}
    out: dict[str, str] = {}
    for item in raw.split(","):
        ext, sep, kind = item.partition("=")
        if not sep or not ext.strip() or not kind.strip():
            raise ConfigurationError(f"Malformed {name} entry: {item!r}")
        ext = ext.strip().lower()
        out[ext if ext.startswith(".") else f".{ext}"] = kind.strip().lower()
    return out
