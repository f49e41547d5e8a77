from pathlib import Path

from vector_store_manager.core.hashing import compute_file_digest


def test_compute_file_digest_sha256(tmp_path: Path) -> None:
    path = tmp_path / "blob.bin"
    path.write_bytes(b"")
    assert compute_file_digest(path) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_compute_file_digest_reads_in_chunks(tmp_path: Path) -> None:
    path = tmp_path / "blob.bin"
    path.write_bytes(b"abc" * 10)
    assert compute_file_digest(path, chunk_size=4) == compute_file_digest(path)
