"""Unit tests for the hashing utility."""

import hashlib

from sealbox.core.hashing import CHUNK_SIZE, calculate_sha256, calculate_sha256_bytes


def test_calculate_sha256_small_file(tmp_path):
    f = tmp_path / "small.txt"
    f.write_bytes(b"hello")
    assert calculate_sha256(f) == hashlib.sha256(b"hello").hexdigest()


def test_calculate_sha256_spans_chunks(tmp_path):
    data = b"x" * (CHUNK_SIZE * 2 + 17)
    f = tmp_path / "big.bin"
    f.write_bytes(data)
    assert calculate_sha256(f) == hashlib.sha256(data).hexdigest()


def test_file_and_buffer_digests_agree(tmp_path):
    f = tmp_path / "empty"
    f.write_bytes(b"")
    assert calculate_sha256(f) == calculate_sha256_bytes(b"")
