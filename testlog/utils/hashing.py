"""Streaming SHA-256 content hashing for managed media files."""

import hashlib
from pathlib import Path
from typing import BinaryIO

HASH_CHUNK_SIZE = 64 * 1024


class ContentHasher:
    """Lowercase hex SHA-256 digests computed over fixed-size chunks."""

    def __init__(self, chunk_size: int = HASH_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def hash_stream(self, stream: BinaryIO) -> str:
        sha256 = hashlib.sha256()
        for chunk in iter(lambda: stream.read(self.chunk_size), b""):
            sha256.update(chunk)
        return sha256.hexdigest()

    def hash_file(self, path: str | Path) -> str:
        """Hash a file on disk. Raises OSError if it cannot be read."""
        with open(path, "rb") as f:
            return self.hash_stream(f)
