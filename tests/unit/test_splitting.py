from __future__ import annotations

from pathlib import Path

import pytest

from vector_store_manager.core.errors import ValidationError
from vector_store_manager.infrastructure.vector.splitting import (
    RecursiveCharacterSplitter,
    SplitterRegistry,
    load_html,
)


def test_splitter_keeps_lines_apart_when_they_do_not_fit_together() -> None:
    splitter = RecursiveCharacterSplitter(chunk_size=5, chunk_overlap=1)
    assert splitter.split_text("line1\nline2") == ["line1", "line2"]


def test_splitter_carries_overlap_between_chunks() -> None:
    splitter = RecursiveCharacterSplitter(chunk_size=3, chunk_overlap=1)
    assert splitter.split_text("a b c d e") == ["a b", "b c", "c d", "d e"]


def test_splitter_falls_back_to_characters() -> None:
    splitter = RecursiveCharacterSplitter(chunk_size=3, chunk_overlap=0)
    assert splitter.split_text("abcdefgh") == ["abc", "def", "gh"]


def test_splitter_prefers_paragraphs() -> None:
    splitter = RecursiveCharacterSplitter(chunk_size=20, chunk_overlap=0)
    text = "first paragraph\n\nsecond paragraph"
    assert splitter.split_text(text) == ["first paragraph", "second paragraph"]


def test_splitter_blank_text_yields_nothing() -> None:
    assert RecursiveCharacterSplitter(chunk_size=10, chunk_overlap=2).split_text(" \n ") == []


def test_splitter_rejects_bad_sizes() -> None:
    with pytest.raises(ValidationError):
        RecursiveCharacterSplitter(chunk_size=0, chunk_overlap=0)
    with pytest.raises(ValidationError):
        RecursiveCharacterSplitter(chunk_size=10, chunk_overlap=10)


def test_load_html_drops_scripts_and_keeps_blocks(tmp_path: Path) -> None:
    page = tmp_path / "page.html"
    page.write_text(
        "<html><head><title>t</title><style>p {}</style></head>"
        "<body><p>Hello</p><script>bad()</script><p>World &amp; more</p></body></html>",
        encoding="utf-8",
    )
    assert load_html(page) == "Hello\nWorld & more"


def test_registry_dispatches_on_extension(tmp_path: Path) -> None:
    source = tmp_path / "notes.md"
    source.write_text("alpha\n\nbeta", encoding="utf-8")
    registry = SplitterRegistry()

    assert registry.split(source, ".MD", 100, 10) == ["alpha\n\nbeta"]
    assert registry.split(source, ".md", 6, 0) == ["alpha", "beta"]


def test_registry_rejects_unknown_extension(tmp_path: Path) -> None:
    source = tmp_path / "notes.docx"
    source.write_bytes(b"PK")
    registry = SplitterRegistry()

    assert registry.supports(".docx") is False
    with pytest.raises(ValidationError, match="unexpected file type"):
        registry.split(source, ".docx", 100, 10)


def test_registry_accepts_configured_extensions() -> None:
    registry = SplitterRegistry({".rst": "text"})
    assert registry.supports(".rst")
    with pytest.raises(ValidationError):
        SplitterRegistry({".rst": "markdown-ish"})


def test_registry_custom_loader(tmp_path: Path) -> None:
    source = tmp_path / "data.csv"
    source.write_text("a,b\nc,d", encoding="utf-8")
    registry = SplitterRegistry()
    registry.register_loader("csv", lambda path: path.read_text(encoding="utf-8").replace(",", " "), (".csv",))

    assert registry.split(source, ".csv", 3, 0) == ["a b", "c d"]
