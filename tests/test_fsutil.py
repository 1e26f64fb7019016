"""Tests for atomic publish and the vault lock."""

import fcntl
import os
import time
from pathlib import Path

import pytest

from gitnu.errors import VaultLocked
from gitnu.vault.fsutil import VaultLock, append_line, atomic_write_bytes, atomic_write_text, cleanup_stale_temp


class TestAtomicWrite:
    def test_writes_and_leaves_no_temp(self, tmp_path: Path):
        tmp_dir = tmp_path / "tmp"
        target = tmp_path / "a" / "b.txt"
        atomic_write_bytes(target, b"hello", tmp_dir=tmp_dir)
        assert target.read_bytes() == b"hello"
        assert list(tmp_dir.iterdir()) == []

    def test_overwrites(self, tmp_path: Path):
        target = tmp_path / "f.txt"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text() == "two"

    def test_append_line(self, tmp_path: Path):
        log = tmp_path / "log.jsonl"
        append_line(log, "first")
        append_line(log, "second\n")
        assert log.read_text() == "first\nsecond\n"


class TestCleanup:
    def test_removes_only_stale(self, tmp_path: Path):
        old = tmp_path / "old.tmp"
        fresh = tmp_path / "fresh.tmp"
        old.write_text("x")
        fresh.write_text("y")
        past = time.time() - 7200
        os.utime(old, (past, past))

        assert cleanup_stale_temp(tmp_path) == 1
        assert not old.exists()
        assert fresh.exists()

    def test_missing_dir(self, tmp_path: Path):
        assert cleanup_stale_temp(tmp_path / "nope") == 0


class TestVaultLock:
    def test_reentrant(self, tmp_path: Path):
        lock = VaultLock(tmp_path / "lock")
        with lock:
            with lock:
                assert lock.held
            assert lock.held
        assert not lock.held

    def test_times_out_when_held_elsewhere(self, tmp_path: Path):
        lock_path = tmp_path / "lock"
        lock_path.touch()
        with open(lock_path, "a+") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX)
            lock = VaultLock(lock_path, timeout=0.1, poll_interval=0.01)
            with pytest.raises(VaultLocked) as exc_info:
                lock.acquire()
            assert exc_info.value.is_retryable
            assert not lock.held
            fcntl.flock(other.fileno(), fcntl.LOCK_UN)

        with lock:
            assert lock.held
