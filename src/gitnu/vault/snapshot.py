"""Snapshot engine: capture the tracked tree into the object store and back.

A snapshot is a manifest object listing ``{path, hash, size}`` for every
tracked document; each document is its own (deduplicated) object. Restoring
makes ``domains/`` an exact replica of the manifest.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath

from gitnu.errors import CorruptSnapshot, NotFound
from gitnu.models import DOMAINS_DIR, Manifest, ManifestEntry, compute_hash
from gitnu.vault.fsutil import atomic_write_bytes
from gitnu.vault.objects import ObjectStore

logger = logging.getLogger(__name__)


def tracked_paths(root: Path) -> list[str]:
    """Every regular file under ``root/domains``, as sorted vault-relative POSIX paths."""
    domains = root / DOMAINS_DIR
    if not domains.is_dir():
        return []
    paths = [
        p.relative_to(root).as_posix()
        for p in domains.rglob("*")
        if p.is_file() and not p.is_symlink()
    ]
    return sorted(paths)


def _check_relative(path: str) -> str:
    pure = PurePosixPath(path)
    if pure.is_absolute() or ".." in pure.parts or not pure.parts or pure.parts[0] != DOMAINS_DIR:
        raise ValueError(f"Not a tracked document path: {path!r}")
    return pure.as_posix()


class SnapshotEngine:
    """Reads and writes the tracked working tree under ``<root>/domains``."""

    def __init__(self, root: Path, objects: ObjectStore, tmp_dir: Path, compress: bool = True) -> None:
        self.root = root
        self.objects = objects
        self.tmp_dir = tmp_dir
        self.compress = compress

    @property
    def domains_dir(self) -> Path:
        return self.root / DOMAINS_DIR

    def tracked_paths(self, root: Path | None = None) -> list[str]:
        return tracked_paths(root or self.root)

    def scan(self, paths: list[str] | None = None) -> Manifest:
        """Hash the working tree without storing anything."""
        if paths is None:
            paths = self.tracked_paths()
        entries = []
        for rel in paths:
            data = (self.root / _check_relative(rel)).read_bytes()
            entries.append(ManifestEntry(path=rel, hash=compute_hash(data), size=len(data)))
        return Manifest(entries=tuple(entries))

    def capture(self, paths: list[str] | None = None) -> str:
        """Store every tracked document plus a manifest; return the manifest hash."""
        if paths is None:
            paths = self.tracked_paths()
        entries = []
        for rel in paths:
            data = (self.root / _check_relative(rel)).read_bytes()
            object_hash = self.objects.put(data, compress=self.compress)
            entries.append(ManifestEntry(path=rel, hash=object_hash, size=len(data)))
        return self.store_manifest(Manifest(entries=tuple(entries)))

    def store_manifest(self, manifest: Manifest) -> str:
        snapshot_hash = self.objects.put(manifest.to_bytes())
        logger.debug(
            "Snapshot %s: %d files, %d bytes",
            snapshot_hash[:12],
            len(manifest.entries),
            manifest.total_size,
        )
        return snapshot_hash

    def load_manifest(self, snapshot_hash: str) -> Manifest:
        try:
            raw = self.objects.get(snapshot_hash)
        except NotFound as e:
            raise CorruptSnapshot(f"Snapshot manifest {snapshot_hash} is missing from the store", snapshot_hash) from e
        return Manifest.from_bytes(raw)

    def read_blob(self, entry: ManifestEntry) -> bytes:
        try:
            return self.objects.get(entry.hash)
        except NotFound as e:
            raise CorruptSnapshot(
                f"Object {entry.hash} for '{entry.path}' is missing from the store",
                entry.hash,
                path=entry.path,
            ) from e

    def verify(self, snapshot_hash: str) -> Manifest:
        """Load a manifest and check every referenced object exists."""
        manifest = self.load_manifest(snapshot_hash)
        for entry in manifest.entries:
            if not self.objects.exists(entry.hash):
                raise CorruptSnapshot(
                    f"Snapshot {snapshot_hash[:12]} references missing object {entry.hash} ('{entry.path}')",
                    entry.hash,
                    snapshot=snapshot_hash,
                    path=entry.path,
                )
        return manifest

    def restore(self, snapshot_hash: str, destination: Path | None = None) -> Manifest:
        """Make ``destination/domains`` an exact replica of the snapshot.

        All objects are checked before the tree is touched, so a corrupt
        store never leaves a half-restored tree behind.
        """
        destination = destination or self.root
        manifest = self.verify(snapshot_hash)

        written = 0
        for entry in manifest.entries:
            target = destination / _check_relative(entry.path)
            if target.is_file() and compute_hash(target.read_bytes()) == entry.hash:
                continue
            if target.is_dir():
                raise CorruptSnapshot(
                    f"Cannot restore '{entry.path}': a directory is in the way",
                    entry.hash,
                    path=entry.path,
                )
            atomic_write_bytes(target, self.read_blob(entry), tmp_dir=self.tmp_dir)
            written += 1

        wanted = set(manifest.paths())
        removed = 0
        for rel in self.tracked_paths(destination):
            if rel not in wanted:
                (destination / rel).unlink()
                removed += 1
        self._prune_empty_dirs(destination / DOMAINS_DIR)

        logger.info(
            "Restored snapshot %s: %d written, %d removed, %d files total",
            snapshot_hash[:12],
            written,
            removed,
            len(manifest.entries),
        )
        return manifest

    def _prune_empty_dirs(self, domains: Path) -> None:
        if not domains.is_dir():
            domains.mkdir(parents=True, exist_ok=True)
            return
        for dirpath, _dirnames, _filenames in os.walk(domains, topdown=False):
            path = Path(dirpath)
            if path != domains and not any(path.iterdir()):
                path.rmdir()
