from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass

from vector_store_manager.core.errors import InternalError, RateLimitedError, ValidationError

logger = logging.getLogger(__name__)

OLLAMA_MODEL_DIMENSIONS = {
    "all-minilm": 384,
    "nomic-embed-text": 768,
}


class OllamaEmbedder:
    """Embedding service backed by an Ollama server.

    ``ensure_model`` pulls the model once per process; later calls are free.
    """

    def __init__(self, host: str | None = None, client=None) -> None:
        self.host = host
        self._client = client
        self._ready: set[str] = set()
        self._lock = threading.Lock()

    def ensure_model(self, name: str) -> None:
        if name in self._ready:
            return
        self.dimension(name)
        client = self._get_client()
        with self._lock:
            if name in self._ready:
                return
            logger.info("Pulling embedding model %s", name)
            try:
                client.pull(name)
            except Exception as exc:
                raise InternalError(f"pull model {name!r}: {exc}") from exc
            self._ready.add(name)

    def embed(self, model: str, text: str) -> list[float]:
        client = self._get_client()
        try:
            response = client.embeddings(model=model, prompt=text)
        except Exception as exc:
            if getattr(exc, "status_code", None) == 429:
                raise RateLimitedError(f"embed with {model!r}: {exc}") from exc
            raise InternalError(f"embed with {model!r}: {exc}") from exc
        embedding = response["embedding"]
        return [float(x) for x in embedding]

    def dimension(self, model: str) -> int:
        try:
            return OLLAMA_MODEL_DIMENSIONS[model]
        except KeyError as exc:
            raise ValidationError(
                f"model must be one of: {', '.join(sorted(OLLAMA_MODEL_DIMENSIONS))}"
            ) from exc

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            import ollama
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise InternalError("ollama is not installed. Install with `pip install -e .`.") from exc
        try:
            self._client = ollama.Client(host=self.host) if self.host else ollama.Client()
        except Exception as exc:
            raise InternalError(f"ollama.Client(): {exc}") from exc
        return self._client


@dataclass(slots=True)
class SentenceTransformerConfig:
    device: str = "auto"
    batch_size: int = 128


class SentenceTransformerEmbedder:
    """Local embedding service; one SentenceTransformer instance per model name."""

    def __init__(self, config: SentenceTransformerConfig | None = None) -> None:
        self.config = config or SentenceTransformerConfig()
        self._models: dict[str, object] = {}
        self._dims: dict[str, int] = {}
        self._lock = threading.Lock()

    def ensure_model(self, name: str) -> None:
        self._load_model(name)

    def embed(self, model: str, text: str) -> list[float]:
        return self.embed_texts(model, [text])[0]

    def embed_texts(self, model: str, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        encoder = self._load_model(model)
        try:
            vectors = encoder.encode(
                texts,
                batch_size=max(1, self.config.batch_size),
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise InternalError(f"embed with {model!r}: {exc}") from exc
        if hasattr(vectors, "tolist"):
            out = vectors.tolist()
        else:
            out = [list(v) for v in vectors]
        return [[float(x) for x in row] for row in out]

    def dimension(self, model: str) -> int:
        if model not in self._dims:
            self._load_model(model)
        dim = self._dims.get(model)
        if not dim:
            raise InternalError(f"Unable to determine embedding dimension of {model!r}.")
        return dim

    def _load_model(self, name: str):
        with self._lock:
            if name in self._models:
                return self._models[name]
            try:
                import torch
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:  # pragma: no cover - dependency guard
                raise InternalError(
                    "Local embedding dependencies are missing. Install with "
                    "`pip install -e '.[local-embeddings]'`."
                ) from exc

            # Keep CPU thread counts bounded when running on large machines.
            if "OMP_NUM_THREADS" not in os.environ:
                os.environ["OMP_NUM_THREADS"] = "8"

            device = self._resolve_device(torch)
            logger.info("Loading SentenceTransformer %s on %s", name, device)
            try:
                encoder = SentenceTransformer(name, device=device)
            except Exception as exc:
                raise InternalError(f"load model {name!r}: {exc}") from exc
            dim = encoder.get_sentence_embedding_dimension()
            if dim:
                self._dims[name] = int(dim)
            self._models[name] = encoder
            return encoder

    def _resolve_device(self, torch_module) -> str:
        configured = (self.config.device or "auto").strip().lower()
        if configured and configured != "auto":
            return configured

        if bool(getattr(torch_module.backends, "mps", None)) and torch_module.backends.mps.is_available():
            return "mps"
        if torch_module.cuda.is_available():
            return "cuda"
        return "cpu"
