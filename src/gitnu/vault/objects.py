"""Content-addressable object store.

Objects are immutable byte blobs keyed by the SHA-256 of their content and
sharded by the first two hex characters::

    .gitnu/objects/ab/ab34...ef        raw object
    .gitnu/objects/cd/cd12...90.zst    zstd-compressed object

There is no update or delete. ``put`` is idempotent and durable before it
returns; publication goes through ``atomic_write_bytes`` so concurrent
writers of the same content simply race to publish identical bytes.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import zstandard as zstd

from gitnu.errors import NotFound, StoreCorruption
from gitnu.models import compute_hash
from gitnu.vault.fsutil import atomic_write_bytes, cleanup_stale_temp

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_COMPRESSED_SUFFIX = ".zst"


class ObjectStore:
    """Write-once blob storage under ``objects_dir``."""

    def __init__(self, objects_dir: Path, tmp_dir: Path, compression_level: int = 6) -> None:
        self.objects_dir = objects_dir
        self.tmp_dir = tmp_dir
        self._compressor = zstd.ZstdCompressor(level=compression_level)
        self._decompressor = zstd.ZstdDecompressor()

    def initialize(self) -> None:
        """Create directories and drop temp files left by killed writers."""
        self.objects_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        cleanup_stale_temp(self.tmp_dir)

    # ── paths ─────────────────────────────────────────────

    def _raw_path(self, object_hash: str) -> Path:
        return self.objects_dir / object_hash[:2] / object_hash

    def _compressed_path(self, object_hash: str) -> Path:
        return self.objects_dir / object_hash[:2] / f"{object_hash}{_COMPRESSED_SUFFIX}"

    # ── public API ────────────────────────────────────────

    def put(self, data: bytes, compress: bool = False) -> str:
        """Store ``data`` and return its content hash."""
        object_hash = compute_hash(data)
        if self.exists(object_hash):
            logger.debug("Object already stored: %s", object_hash[:12])
            return object_hash

        if compress and data:
            atomic_write_bytes(
                self._compressed_path(object_hash),
                self._compressor.compress(data),
                tmp_dir=self.tmp_dir,
            )
        else:
            atomic_write_bytes(self._raw_path(object_hash), data, tmp_dir=self.tmp_dir)
        logger.debug("Stored object %s (%d bytes, compressed=%s)", object_hash[:12], len(data), compress)
        return object_hash

    def get(self, object_hash: str) -> bytes:
        """Return the bytes stored under ``object_hash``; ``NotFound`` if absent."""
        if not _HASH_RE.match(object_hash or ""):
            raise NotFound("object", object_hash)

        raw = self._raw_path(object_hash)
        if raw.exists():
            data = raw.read_bytes()
        else:
            compressed = self._compressed_path(object_hash)
            if not compressed.exists():
                raise NotFound("object", object_hash)
            try:
                data = self._decompressor.decompress(compressed.read_bytes())
            except zstd.ZstdError as e:
                raise StoreCorruption(f"Object {object_hash} cannot be decompressed: {e}", object_hash) from e

        if compute_hash(data) != object_hash:
            raise StoreCorruption(f"Object {object_hash} does not match its content hash", object_hash)
        return data

    def exists(self, object_hash: str) -> bool:
        if not _HASH_RE.match(object_hash or ""):
            return False
        return self._raw_path(object_hash).exists() or self._compressed_path(object_hash).exists()

