"""Path-level differences between two snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from gitnu.models import ContextSummary, Manifest, ManifestEntry, domain_of

if TYPE_CHECKING:
    from gitnu.vault.graph import CommitGraph
    from gitnu.vault.snapshot import SnapshotEngine


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"

    @property
    def symbol(self) -> str:
        return {"added": "+", "removed": "-", "modified": "~"}[self.value]


@dataclass(frozen=True)
class FileChange:
    path: str
    status: ChangeType
    old: ManifestEntry | None = None
    new: ManifestEntry | None = None

    @property
    def token_delta(self) -> int:
        added = self.new.tokens if self.new else 0
        removed = self.old.tokens if self.old else 0
        return added - removed

    def reversed(self) -> FileChange:
        status = {
            ChangeType.ADDED: ChangeType.REMOVED,
            ChangeType.REMOVED: ChangeType.ADDED,
            ChangeType.MODIFIED: ChangeType.MODIFIED,
        }[self.status]
        return FileChange(path=self.path, status=status, old=self.new, new=self.old)


@dataclass(frozen=True)
class ChangeSet:
    """Changes going from ``source`` to ``target``, sorted by path."""

    source: str | None
    target: str | None
    changes: tuple[FileChange, ...] = field(default_factory=tuple)

    @property
    def token_delta(self) -> int:
        return sum(c.token_delta for c in self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)

    def paths(self, status: ChangeType | None = None) -> list[str]:
        return [c.path for c in self.changes if status is None or c.status == status]

    def get(self, path: str) -> FileChange | None:
        for change in self.changes:
            if change.path == path:
                return change
        return None

    def domains(self) -> set[str]:
        return {d for d in (domain_of(c.path) for c in self.changes) if d}

    def reversed(self) -> ChangeSet:
        return ChangeSet(
            source=self.target,
            target=self.source,
            changes=tuple(c.reversed() for c in self.changes),
        )


def diff_manifests(
    a: Manifest,
    b: Manifest,
    source: str | None = None,
    target: str | None = None,
) -> ChangeSet:
    """Classify every path in either manifest; unchanged paths are omitted."""
    map_a = a.as_map()
    map_b = b.as_map()
    changes = []
    for path in sorted(set(map_a) | set(map_b)):
        old = map_a.get(path)
        new = map_b.get(path)
        if old is None:
            changes.append(FileChange(path=path, status=ChangeType.ADDED, new=new))
        elif new is None:
            changes.append(FileChange(path=path, status=ChangeType.REMOVED, old=old))
        elif old.hash != new.hash:
            changes.append(FileChange(path=path, status=ChangeType.MODIFIED, old=old, new=new))
    return ChangeSet(source=source, target=target, changes=tuple(changes))


class DiffEngine:
    """Diffs between commits, or between a commit and the working tree."""

    def __init__(self, graph: CommitGraph, snapshots: SnapshotEngine) -> None:
        self.graph = graph
        self.snapshots = snapshots

    def manifest_of(self, commit_hash: str) -> Manifest:
        return self.snapshots.load_manifest(self.graph.get_commit(commit_hash).snapshot)

    def diff(self, commit_a: str, commit_b: str) -> ChangeSet:
        return diff_manifests(
            self.manifest_of(commit_a),
            self.manifest_of(commit_b),
            source=commit_a,
            target=commit_b,
        )

    def diff_worktree(self, commit_hash: str | None) -> ChangeSet:
        """``commit_hash`` -> current working tree (``target`` is None)."""
        base = self.manifest_of(commit_hash) if commit_hash else Manifest()
        return diff_manifests(base, self.snapshots.scan(), source=commit_hash, target=None)


def summarize(changes: ChangeSet, manifest: Manifest, loaded: tuple[str, ...] | list[str] = ()) -> ContextSummary:
    """Context summary for a commit whose tree is ``manifest``."""
    return ContextSummary(
        domains_touched=tuple(sorted(changes.domains())),
        files_changed=len(changes),
        token_estimate=manifest.token_estimate,
        loaded=tuple(sorted(loaded)),
    )
