from __future__ import annotations

import logging
from html.parser import HTMLParser
from pathlib import Path
from typing import Callable

from vector_store_manager.core.errors import IngestionError, ValidationError

logger = logging.getLogger(__name__)

LOADER_TEXT = "text"
LOADER_HTML = "html"
LOADER_PDF = "pdf"

DEFAULT_EXTENSION_LOADERS = {
    ".txt": LOADER_TEXT,
    ".md": LOADER_TEXT,
    ".html": LOADER_HTML,
    ".htm": LOADER_HTML,
    ".pdf": LOADER_PDF,
}

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


class _HTMLTextExtractor(HTMLParser):
    _SKIP_TAGS = {"script", "style", "head", "noscript"}
    _BLOCK_TAGS = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "section", "article"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.blocks: list[str] = []
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        normalized = tag.lower()
        if normalized in self._SKIP_TAGS:
            self._skip_depth += 1
        elif normalized in self._BLOCK_TAGS:
            self._flush()

    def handle_endtag(self, tag: str) -> None:
        normalized = tag.lower()
        if normalized in self._SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif normalized in self._BLOCK_TAGS:
            self._flush()

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        text = " ".join(data.split())
        if text:
            self._parts.append(text)

    def close(self) -> None:
        super().close()
        self._flush()

    def _flush(self) -> None:
        if self._parts:
            self.blocks.append(" ".join(self._parts))
            self._parts = []


def load_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def load_html(path: Path) -> str:
    parser = _HTMLTextExtractor()
    parser.feed(path.read_text(encoding="utf-8", errors="replace"))
    parser.close()
    return "\n".join(parser.blocks)


def load_pdf(path: Path) -> str:
    try:
        import fitz  # PyMuPDF
    except ImportError as exc:  # pragma: no cover - dependency guard
        raise IngestionError("PyMuPDF is required for PDF files. Install with `pip install -e '.[pdf]'`.") from exc
    try:
        with fitz.open(str(path)) as doc:
            pages = [page.get_text() for page in doc]
    except Exception as exc:
        raise IngestionError(f"read pdf {path.name}: {exc}") from exc
    return "\n\n".join(page.strip() for page in pages if page.strip())


class RecursiveCharacterSplitter:
    """Split text on the coarsest separator that fits, then merge with overlap."""

    def __init__(
        self,
        chunk_size: int,
        chunk_overlap: int,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_size <= 0:
            raise ValidationError("chunk_size must be greater than 0")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValidationError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators

    def split_text(self, text: str) -> list[str]:
        if not text.strip():
            return []
        return self._split(text, list(self.separators))

    def _split(self, text: str, separators: list[str]) -> list[str]:
        separator = separators[-1]
        remaining: list[str] = []
        for idx, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                remaining = separators[idx + 1:]
                break

        pieces = text.split(separator) if separator else list(text)
        out: list[str] = []
        pending: list[str] = []
        for piece in pieces:
            if len(piece) <= self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                out.extend(self._merge(pending, separator))
                pending = []
            if remaining:
                out.extend(self._split(piece, remaining))
            else:
                out.append(piece)
        if pending:
            out.extend(self._merge(pending, separator))
        return out

    def _merge(self, pieces: list[str], separator: str) -> list[str]:
        sep_len = len(separator)
        docs: list[str] = []
        window: list[str] = []
        total = 0
        for piece in pieces:
            joined_len = total + len(piece) + (sep_len if window else 0)
            if joined_len > self.chunk_size and window:
                doc = separator.join(window).strip()
                if doc:
                    docs.append(doc)
                while window and (
                    total > self.chunk_overlap
                    or total + len(piece) + (sep_len if window else 0) > self.chunk_size
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)
            window.append(piece)
            total += len(piece) + (sep_len if len(window) > 1 else 0)
        doc = separator.join(window).strip()
        if doc:
            docs.append(doc)
        return docs


class SplitterRegistry:
    """Pick a loader by file extension and split its text into ordered chunks."""

    def __init__(self, extension_loaders: dict[str, str] | None = None) -> None:
        self.loaders: dict[str, Callable[[Path], str]] = {
            LOADER_TEXT: load_text,
            LOADER_HTML: load_html,
            LOADER_PDF: load_pdf,
        }
        self.extension_loaders = dict(DEFAULT_EXTENSION_LOADERS)
        for ext, kind in (extension_loaders or {}).items():
            if kind not in self.loaders:
                raise ValidationError(f"Unknown loader {kind!r} for extension {ext!r}")
            self.extension_loaders[ext.lower()] = kind

    def register_loader(self, kind: str, loader: Callable[[Path], str], extensions: tuple[str, ...] = ()) -> None:
        self.loaders[kind] = loader
        for ext in extensions:
            self.extension_loaders[ext.lower()] = kind

    def supports(self, file_type: str) -> bool:
        return file_type.lower() in self.extension_loaders

    def split(self, content: Path, file_type: str, chunk_size_chars: int, overlap_chars: int) -> list[str]:
        kind = self.extension_loaders.get(file_type.lower())
        if kind is None:
            raise ValidationError(f"unexpected file type: {file_type!r}")
        text = self.loaders[kind](content)
        splitter = RecursiveCharacterSplitter(chunk_size=chunk_size_chars, chunk_overlap=overlap_chars)
        chunks = splitter.split_text(text)
        logger.debug("Split %s (%s) into %d chunks", content.name, kind, len(chunks))
        return chunks
