"""Atomic publish and the vault-scoped advisory lock.

Every file the engine publishes (objects, refs, HEAD, index) is written to a
temp file, fsynced, then moved into place with ``os.replace``: a concurrent
reader sees either the old file or the new one, never a partial write.
Mutating operations additionally hold an ``fcntl.flock`` on ``.gitnu/lock``
so two processes cannot interleave ref updates.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
import time
from pathlib import Path

from gitnu.errors import VaultLocked

logger = logging.getLogger(__name__)

STALE_TEMP_SECONDS = 3600


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes, tmp_dir: Path | None = None) -> None:
    """Durably write ``data`` to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    directory = tmp_dir or path.parent
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise
    _fsync_dir(path.parent)


def atomic_write_text(path: Path, text: str, tmp_dir: Path | None = None) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), tmp_dir=tmp_dir)


def append_line(path: Path, line: str) -> None:
    """Append one record to an append-only log and fsync it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line.rstrip("\n") + "\n")
        f.flush()
        os.fsync(f.fileno())


def cleanup_stale_temp(tmp_dir: Path, max_age: float = STALE_TEMP_SECONDS) -> int:
    """Remove temp files abandoned by killed processes. Returns count removed."""
    if not tmp_dir.is_dir():
        return 0
    cutoff = time.time() - max_age
    removed = 0
    for tmp in tmp_dir.iterdir():
        try:
            if tmp.is_file() and tmp.stat().st_mtime < cutoff:
                tmp.unlink()
                removed += 1
        except FileNotFoundError:
            continue
    if removed:
        logger.info("Removed %d stale temp file(s) from %s", removed, tmp_dir)
    return removed


class VaultLock:
    """Cross-process exclusive lock with a bounded wait.

    Re-entrant within one process so composite operations (merge commits,
    hard rewinds) can call other locked operations.
    """

    def __init__(self, lock_path: Path, timeout: float = 10.0, poll_interval: float = 0.05) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._file = None
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        if self._depth:
            self._depth += 1
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        f = open(self.lock_path, "a+")
        deadline = time.monotonic() + self.timeout
        waited = False
        while True:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    f.close()
                    raise VaultLocked(str(self.lock_path), self.timeout)
                if not waited:
                    logger.debug("Waiting for vault lock %s", self.lock_path)
                    waited = True
                time.sleep(self.poll_interval)
        self._file = f
        self._depth = 1

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        f, self._file = self._file, None
        if f is not None:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            f.close()

    def __enter__(self) -> VaultLock:
        self.acquire()
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> None:
        self.release()
