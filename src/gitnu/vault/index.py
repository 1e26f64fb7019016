"""Context Index: which tracked documents are in the agent's working context.

Persisted as ``.gitnu/index.json``::

    {"loaded": [...], "pinned": [...], "excluded": [...]}

Entries may be files or directories under ``domains/``; exclusions may also
be glob patterns. The active set is computed at read time, so an exclusion
added later hides paths that were loaded or pinned earlier.
"""

from __future__ import annotations

import fnmatch
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from gitnu.errors import CorruptIndex, NotFound
from gitnu.models import ActiveContext, ActiveEntry, estimate_tokens
from gitnu.vault.fsutil import atomic_write_text
from gitnu.vault.snapshot import SnapshotEngine

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


def matches(path: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """True if ``path`` equals, lives under, or globs against any pattern."""
    for pattern in patterns:
        stem = pattern.rstrip("/")
        if path == stem or path.startswith(stem + "/") or fnmatch.fnmatchcase(path, pattern):
            return True
    return False


def _normalize(path: str) -> str:
    return path.strip().replace("\\", "/").strip("/")


@dataclass
class IndexState:
    loaded: list[str] = field(default_factory=list)
    pinned: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "loaded": sorted(self.loaded),
            "pinned": sorted(self.pinned),
            "excluded": sorted(self.excluded),
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexState:
        return cls(
            loaded=list(data.get("loaded", [])),
            pinned=list(data.get("pinned", [])),
            excluded=list(data.get("excluded", [])),
        )


@dataclass
class LoadResult:
    added: list[str] = field(default_factory=list)
    already_loaded: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)


class ContextIndex:
    def __init__(
        self,
        path: Path,
        snapshots: SnapshotEngine,
        tmp_dir: Path,
        max_tokens: int = 100_000,
        always_load: list[str] | None = None,
        never_load: list[str] | None = None,
    ) -> None:
        self.path = path
        self.snapshots = snapshots
        self.tmp_dir = tmp_dir
        self.max_tokens = max_tokens
        self.always_load = list(always_load or [])
        self.never_load = list(never_load or [])

    # ── persistence ───────────────────────────────────────

    def initialize(self) -> None:
        if not self.path.exists():
            self._save(IndexState())

    def read(self) -> IndexState:
        if not self.path.exists():
            return IndexState()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptIndex(str(self.path), str(e)) from e
        if not isinstance(data, dict) or not all(
            isinstance(data.get(key, []), list) for key in ("loaded", "pinned", "excluded")
        ):
            raise CorruptIndex(str(self.path), "expected an object of path lists")
        return IndexState.from_dict(data)

    def _save(self, state: IndexState) -> None:
        atomic_write_text(
            self.path,
            json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n",
            tmp_dir=self.tmp_dir,
        )

    # ── path helpers ──────────────────────────────────────

    def _exists(self, path: str) -> bool:
        target = self.snapshots.root / path
        return target.is_file() or target.is_dir()

    def _expand(self, entry: str, tracked: list[str]) -> list[str]:
        if entry in tracked:
            return [entry]
        prefix = entry.rstrip("/") + "/"
        under = [p for p in tracked if p.startswith(prefix)]
        if under:
            return under
        return [p for p in tracked if fnmatch.fnmatchcase(p, entry)]

    # ── mutation ──────────────────────────────────────────

    def load(self, paths: list[str]) -> LoadResult:
        """Add paths to ``loaded``. Excluded paths are reported, not stored."""
        state = self.read()
        result = LoadResult()
        exclusions = state.excluded + self.never_load
        for raw in paths:
            path = _normalize(raw)
            if not self._exists(path):
                raise NotFound("path", path)
            if matches(path, exclusions):
                logger.warning("Not loading excluded path: %s", path)
                result.excluded.append(path)
            elif path in state.loaded:
                result.already_loaded.append(path)
            else:
                state.loaded.append(path)
                result.added.append(path)
        if result.added:
            self._save(state)
            logger.info("Loaded %d path(s): %s", len(result.added), ", ".join(result.added))
        return result

    def unload(self, paths: list[str]) -> list[str]:
        state = self.read()
        targets = {_normalize(p) for p in paths}
        removed = [p for p in state.loaded if p in targets]
        if removed:
            state.loaded = [p for p in state.loaded if p not in targets]
            self._save(state)
        return removed

    def unload_all(self) -> int:
        state = self.read()
        count = len(state.loaded)
        state.loaded = []
        self._save(state)
        return count

    def pin(self, paths: list[str]) -> list[str]:
        state = self.read()
        added = []
        for raw in paths:
            path = _normalize(raw)
            if not self._exists(path):
                raise NotFound("path", path)
            if path not in state.pinned:
                state.pinned.append(path)
                added.append(path)
        if added:
            self._save(state)
        return added

    def unpin(self, paths: list[str]) -> list[str]:
        state = self.read()
        targets = {_normalize(p) for p in paths}
        removed = [p for p in state.pinned if p in targets]
        if removed:
            state.pinned = [p for p in state.pinned if p not in targets]
            self._save(state)
        return removed

    def exclude(self, patterns: list[str]) -> list[str]:
        state = self.read()
        added = [p for p in (_normalize(x) for x in patterns) if p and p not in state.excluded]
        if added:
            state.excluded.extend(added)
            self._save(state)
        return added

    def include(self, patterns: list[str]) -> list[str]:
        state = self.read()
        targets = {_normalize(p) for p in patterns}
        removed = [p for p in state.excluded if p in targets]
        if removed:
            state.excluded = [p for p in state.excluded if p not in targets]
            self._save(state)
        return removed

    def reset_loaded(self, paths: list[str] | tuple[str, ...]) -> None:
        """Replace ``loaded`` wholesale; pins and exclusions are kept."""
        state = self.read()
        state.loaded = sorted(set(paths))
        self._save(state)

    # ── read side ─────────────────────────────────────────

    def active_set(self) -> ActiveContext:
        state = self.read()
        tracked = self.snapshots.tracked_paths()
        exclusions = state.excluded + self.never_load

        pinned: set[str] = set()
        for entry in state.pinned:
            pinned.update(self._expand(entry, tracked))
        wanted = set(pinned)
        for entry in state.loaded + self.always_load:
            expanded = self._expand(entry, tracked)
            if not expanded:
                logger.debug("Loaded path no longer tracked: %s", entry)
            wanted.update(expanded)

        entries = []
        for path in sorted(wanted):
            if matches(path, exclusions):
                continue
            size = (self.snapshots.root / path).stat().st_size
            entries.append(ActiveEntry(path=path, tokens=estimate_tokens(size), pinned=path in pinned))

        context = ActiveContext(entries=entries, budget=self.max_tokens)
        if context.over_budget:
            logger.warning(
                "Active context is over budget: %d > %d tokens",
                context.total_tokens,
                self.max_tokens,
            )
        return context
