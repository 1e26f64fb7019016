"""Tests for snapshot capture and restore."""

from pathlib import Path

import pytest

from gitnu.errors import CorruptSnapshot
from gitnu.vault.objects import ObjectStore
from gitnu.vault.snapshot import SnapshotEngine


@pytest.fixture
def engine(tmp_path: Path) -> SnapshotEngine:
    root = tmp_path / "vault"
    (root / "domains").mkdir(parents=True)
    objects = ObjectStore(tmp_path / "objects", tmp_path / "tmp")
    objects.initialize()
    return SnapshotEngine(root, objects, tmp_path / "tmp")


def _tree(root: Path) -> dict[str, bytes]:
    domains = root / "domains"
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in domains.rglob("*") if p.is_file()}


class TestCapture:
    def test_tracked_paths_sorted_and_scoped(self, engine: SnapshotEngine, write):
        write(engine.root, "domains/b/two.md", "two")
        write(engine.root, "domains/a/one.md", "one")
        write(engine.root, "README.md", "not tracked")
        assert engine.tracked_paths() == ["domains/a/one.md", "domains/b/two.md"]

    def test_scan_matches_capture(self, engine: SnapshotEngine, write):
        write(engine.root, "domains/a/one.md", "one")
        write(engine.root, "domains/a/two.md", "two")
        scanned = engine.scan()
        captured = engine.load_manifest(engine.capture())
        assert scanned == captured
        assert scanned.total_size == 6

    def test_identical_documents_dedupe(self, engine: SnapshotEngine, write):
        write(engine.root, "domains/a/one.md", "same")
        write(engine.root, "domains/b/one.md", "same")
        manifest = engine.load_manifest(engine.capture())
        assert len({e.hash for e in manifest.entries}) == 1

    def test_rejects_paths_outside_domains(self, engine: SnapshotEngine):
        with pytest.raises(ValueError):
            engine.scan(["../secret.md"])


class TestRestore:
    def test_round_trip_into_fresh_directory(self, engine: SnapshotEngine, write, tmp_path: Path):
        write(engine.root, "domains/auth/spec.md", "---\ntitle: Auth\n---\nbody\n")
        write(engine.root, "domains/auth/deep/nested.md", "nested")
        write(engine.root, "domains/empty.md", "")
        snapshot = engine.capture()

        destination = tmp_path / "restored"
        engine.restore(snapshot, destination)
        assert _tree(destination) == _tree(engine.root)

    def test_restore_removes_extra_files_and_empty_dirs(self, engine: SnapshotEngine, write):
        write(engine.root, "domains/a/keep.md", "keep")
        snapshot = engine.capture()
        write(engine.root, "domains/a/keep.md", "changed")
        write(engine.root, "domains/b/extra.md", "extra")

        engine.restore(snapshot)
        assert _tree(engine.root) == {"domains/a/keep.md": b"keep"}
        assert not (engine.root / "domains" / "b").exists()

    def test_missing_object_leaves_tree_untouched(self, engine: SnapshotEngine, write):
        write(engine.root, "domains/a/one.md", "one")
        snapshot = engine.capture()
        entry = engine.load_manifest(snapshot).entries[0]
        for p in (engine.objects.objects_dir / entry.hash[:2]).glob(f"{entry.hash}*"):
            p.unlink()
        write(engine.root, "domains/a/one.md", "edited")

        with pytest.raises(CorruptSnapshot) as exc_info:
            engine.restore(snapshot)
        assert exc_info.value.details["object_hash"] == entry.hash
        assert (engine.root / "domains/a/one.md").read_text() == "edited"
