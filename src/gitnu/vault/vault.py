"""Vault handle: the one object callers hold to operate on a vault.

Wires the object store, snapshot engine, commit graph, diff and merge
engines and the context index to a single root directory. Every mutation
runs under the vault lock; reads never take it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from gitnu.config import CONFIG_FILENAME, GitnuConfig, default_author, load_config, render_default_config
from gitnu.errors import AlreadyExists, DirtyState, NotFound, VaultNotFound
from gitnu.models import (
    DOMAINS_DIR,
    ActiveContext,
    Attached,
    Author,
    BranchRef,
    Commit,
    Head,
    Manifest,
)
from gitnu.vault.diff import ChangeSet, DiffEngine, diff_manifests, summarize
from gitnu.vault.fsutil import VaultLock, atomic_write_text
from gitnu.vault.graph import CommitGraph, RewindMode
from gitnu.vault.index import INDEX_FILENAME, ContextIndex, LoadResult
from gitnu.vault.merge import MergeEngine, MergePlan
from gitnu.vault.objects import ObjectStore
from gitnu.vault.snapshot import SnapshotEngine

logger = logging.getLogger(__name__)

GITNU_DIR = ".gitnu"
_ANCESTRY_RE = re.compile(r"^(?P<base>.+?)~(?P<steps>\d*)$")


@dataclass
class StatusReport:
    head: Head
    commit: Commit | None
    changes: ChangeSet
    active: ActiveContext
    untracked_domains: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return self.changes.is_empty


class Vault:
    def __init__(self, root: Path, config: GitnuConfig | None = None) -> None:
        self.root = Path(root)
        self.gitnu_dir = self.root / GITNU_DIR
        self.config = config or load_config(self.gitnu_dir / CONFIG_FILENAME)
        tmp_dir = self.gitnu_dir / "tmp"

        self.objects = ObjectStore(self.gitnu_dir / "objects", tmp_dir)
        self.snapshots = SnapshotEngine(
            self.root,
            self.objects,
            tmp_dir,
            compress=self.config.context.compress_snapshots,
        )
        self.graph = CommitGraph(self.gitnu_dir, self.objects, tmp_dir)
        self.diffs = DiffEngine(self.graph, self.snapshots)
        self.merges = MergeEngine(self.graph, self.snapshots)
        self.index = ContextIndex(
            self.gitnu_dir / INDEX_FILENAME,
            self.snapshots,
            tmp_dir,
            max_tokens=self.config.context.max_tokens,
            always_load=self.config.pins.always_load,
            never_load=self.config.pins.never_load,
        )
        self.lock = VaultLock(self.gitnu_dir / "lock", timeout=self.config.context.lock_timeout)

    # ── lifecycle ─────────────────────────────────────────

    @classmethod
    def init(cls, root: Path, name: str | None = None, author: Author | None = None) -> Vault:
        """Create a vault at ``root`` with a root commit of whatever domains/ holds."""
        root = Path(root)
        gitnu_dir = root / GITNU_DIR
        if gitnu_dir.exists():
            raise AlreadyExists("vault", str(root))

        gitnu_dir.mkdir(parents=True)
        (root / DOMAINS_DIR).mkdir(exist_ok=True)
        name = name or root.resolve().name
        config_path = gitnu_dir / CONFIG_FILENAME
        atomic_write_text(config_path, render_default_config(name))

        vault = cls(root, load_config(config_path))
        vault.objects.initialize()
        vault.graph.initialize(vault.config.core.default_branch)
        vault.index.initialize()
        with vault.lock:
            vault._commit_worktree(
                parent=None,
                message=f"Initialize vault {name}",
                author=author or default_author(vault.config),
            )
        logger.info("Initialized vault '%s' at %s", name, root)
        return vault

    @classmethod
    def open(cls, root: Path) -> Vault:
        root = Path(root)
        if not (root / GITNU_DIR).is_dir():
            raise VaultNotFound(str(root))
        vault = cls(root)
        vault.objects.initialize()
        return vault

    @classmethod
    def discover(cls, start: Path | None = None) -> Vault:
        """Walk up from ``start`` to the first directory holding .gitnu/."""
        origin = Path(start or Path.cwd()).resolve()
        p = origin
        while True:
            if (p / GITNU_DIR).is_dir():
                return cls.open(p)
            if p == p.parent:
                raise VaultNotFound(str(origin))
            p = p.parent

    # ── helpers ───────────────────────────────────────────

    def _describe_head(self) -> str:
        return self.graph.read_head().describe()

    def _manifest_at(self, commit_hash: str | None) -> Manifest:
        return self.diffs.manifest_of(commit_hash) if commit_hash else Manifest()

    def _require_clean(self, action: str) -> None:
        if not self.diff_worktree().is_empty:
            raise DirtyState(
                f"Uncommitted changes in the working tree; commit them or {action} with force",
                head=self._describe_head(),
            )

    def _commit_worktree(
        self,
        parent: str | None,
        message: str,
        author: Author,
        allow_empty: bool = False,
    ) -> Commit:
        changes = diff_manifests(self._manifest_at(parent), self.snapshots.scan())
        if changes.is_empty and not allow_empty and parent is not None:
            raise DirtyState("Nothing to commit, working tree clean", head=self._describe_head())
        snapshot_hash = self.snapshots.capture()
        manifest = self.snapshots.load_manifest(snapshot_hash)
        return self.graph.commit(
            parents=[parent] if parent else [],
            author=author,
            message=message,
            snapshot_hash=snapshot_hash,
            context_summary=summarize(changes, manifest, self.index.read().loaded),
        )

    def _restore_commit(self, commit: Commit) -> None:
        self.snapshots.restore(commit.snapshot)
        self.index.reset_loaded(commit.context_summary.loaded)

    # ── history ───────────────────────────────────────────

    def commit(
        self,
        message: str,
        author: Author | None = None,
        allow_empty: bool = False,
        session_id: str | None = None,
    ) -> Commit:
        """Snapshot the working tree onto HEAD."""
        if not message.strip():
            raise ValueError("Commit message must not be empty")
        with self.lock:
            return self._commit_worktree(
                parent=self.graph.head_commit_hash(),
                message=message,
                author=author or default_author(self.config, session_id=session_id),
                allow_empty=allow_empty,
            )

    def checkout(self, target: str, force: bool = False) -> Head:
        """Switch HEAD to a branch or commit and restore its tree."""
        with self.lock:
            if not force:
                self._require_clean("checkout")
            if self.graph.read_ref(target) is not None:
                commit_hash = self.graph.branch_head(target)
            else:
                target = commit_hash = self.resolve(target)
            commit = self.graph.get_commit(commit_hash)
            # HEAD only moves once every object of the target tree is present
            self.snapshots.verify(commit.snapshot)
            head = self.graph.checkout(target)
            self._restore_commit(commit)
            return head

    def create_branch(self, name: str, from_ref: str | None = None, description: str | None = None) -> BranchRef:
        with self.lock:
            start = self.resolve(from_ref or "HEAD")
            return self.graph.create_branch(name, start, description)

    def delete_branch(self, name: str) -> None:
        with self.lock:
            self.graph.delete_branch(name)

    def branches(self) -> list[BranchRef]:
        return self.graph.list_branches()

    def rewind(self, ref: str, mode: RewindMode = "hard") -> Commit:
        """Move the current ref back to ``ref``.

        ``soft`` leaves the working tree and index alone so the discarded
        work shows up as uncommitted changes. ``hard`` restores the tree.
        """
        with self.lock:
            commit = self.graph.get_commit(self.resolve(ref))
            if mode == "hard":
                self.snapshots.verify(commit.snapshot)
            self.graph.rewind(commit.hash, mode)
            if mode == "hard":
                self._restore_commit(commit)
            return commit

    def merge(
        self,
        source: str,
        target: str | None = None,
        author: Author | None = None,
        force: bool = False,
        squash: bool = False,
    ) -> Commit:
        """Merge branch ``source`` into ``target`` (default: the attached branch)."""
        with self.lock:
            head = self.graph.read_head()
            if target is None:
                if not isinstance(head, Attached):
                    raise DirtyState("Cannot merge into a detached HEAD; name a target branch", head=head.describe())
                target = head.branch
            on_target = isinstance(head, Attached) and head.branch == target
            if on_target and not force:
                self._require_clean("merge")

            result = self.merges.merge(source, target, author or default_author(self.config), squash=squash)
            if on_target and result.created:
                self.snapshots.restore(result.commit.snapshot)
            return result.commit

    def merge_plan(self, source: str, target: str | None = None) -> MergePlan:
        if target is None:
            head = self.graph.read_head()
            if not isinstance(head, Attached):
                raise DirtyState("Cannot merge into a detached HEAD; name a target branch", head=head.describe())
            target = head.branch
        return self.merges.plan(source, target)

    def log(self, branch: str | None = None, limit: int | None = None) -> list[Commit]:
        return self.graph.log(branch, limit)

    def resolve(self, ref: str) -> str:
        """Branch name, ``HEAD``, ``<ref>~N``, full hash or unique prefix -> full hash."""
        ref = ref.strip()
        steps = 0
        m = _ANCESTRY_RE.match(ref)
        if m:
            ref = m.group("base")
            steps = int(m.group("steps") or 1)

        if ref == "HEAD":
            commit_hash = self.graph.head_commit_hash()
            if commit_hash is None:
                raise NotFound("commit", "HEAD")
        elif self.graph.read_ref(ref) is not None:
            commit_hash = self.graph.branch_head(ref)
        else:
            commit_hash = self.graph.resolve_commit(ref)

        for _ in range(steps):
            parents = self.graph.get_commit(commit_hash).parents
            if not parents:
                raise NotFound("commit", f"{ref}~{steps}")
            commit_hash = parents[0]
        return commit_hash

    # ── diffs & status ────────────────────────────────────

    def diff(self, ref_a: str, ref_b: str) -> ChangeSet:
        return self.diffs.diff(self.resolve(ref_a), self.resolve(ref_b))

    def diff_worktree(self, ref: str | None = None) -> ChangeSet:
        commit_hash = self.resolve(ref) if ref else self.graph.head_commit_hash()
        return self.diffs.diff_worktree(commit_hash)

    def untracked_domains(self) -> list[str]:
        head = self.graph.head_commit_hash()
        committed = self._manifest_at(head).domains()
        worktree = self.snapshots.scan().domains()
        return sorted(d for d in worktree - committed if not d.startswith("_"))

    def status(self) -> StatusReport:
        head_hash = self.graph.head_commit_hash()
        return StatusReport(
            head=self.graph.read_head(),
            commit=self.graph.get_commit(head_hash) if head_hash else None,
            changes=self.diff_worktree(),
            active=self.active_set(),
            untracked_domains=self.untracked_domains(),
        )

    # ── context index ─────────────────────────────────────

    def load(self, paths: list[str]) -> LoadResult:
        with self.lock:
            return self.index.load(paths)

    def unload(self, paths: list[str]) -> list[str]:
        with self.lock:
            return self.index.unload(paths)

    def unload_all(self) -> int:
        with self.lock:
            return self.index.unload_all()

    def pin(self, paths: list[str]) -> list[str]:
        with self.lock:
            return self.index.pin(paths)

    def unpin(self, paths: list[str]) -> list[str]:
        with self.lock:
            return self.index.unpin(paths)

    def exclude(self, patterns: list[str]) -> list[str]:
        with self.lock:
            return self.index.exclude(patterns)

    def include(self, patterns: list[str]) -> list[str]:
        with self.lock:
            return self.index.include(patterns)

    def active_set(self) -> ActiveContext:
        return self.index.active_set()

    # ── reports ───────────────────────────────────────────

    def render_context(self, compress: bool = False) -> str:
        """The active set as one document, one ``# File:`` section per path."""
        parts = []
        for entry in self.active_set().entries:
            text = (self.root / entry.path).read_bytes().decode("utf-8", errors="replace")
            if compress:
                text = _compress_text(text)
            parts.append(f"# File: {entry.path}\n\n{text.strip()}")
        return "\n\n---\n\n".join(parts)

    def summary(self) -> str:
        """Markdown overview of HEAD, domains, pending changes and branches."""
        status = self.status()
        head_hash = status.commit.hash if status.commit else None
        manifest = self._manifest_at(head_hash)
        lines = [f"# Vault Summary: {self.config.core.vault_name}", "", "## Current State"]
        lines.append(f"- **HEAD**: {status.head.describe()}")
        if status.commit:
            first_line = status.commit.message.splitlines()[0] if status.commit.message else ""
            lines.append(
                f"- **Last commit**: {status.commit.short} {first_line} "
                f"({status.commit.author.display()}, {status.commit.timestamp:%Y-%m-%d %H:%M})"
            )
        lines.append(
            f"- **Active context**: {len(status.active.entries)} files, "
            f"{status.active.total_tokens} / {status.active.budget} tokens"
            + (" (over budget)" if status.active.over_budget else "")
        )

        lines += ["", "## Domains"]
        domains: dict[str, list[int]] = {}
        for entry in manifest.entries:
            parts = entry.path.split("/")
            name = parts[1] if len(parts) >= 3 else "(root)"
            stats = domains.setdefault(name, [0, 0])
            stats[0] += 1
            stats[1] += entry.tokens
        if domains:
            lines += ["| Domain | Files | Tokens |", "|--------|-------|--------|"]
            for name, (files, tokens) in sorted(domains.items()):
                lines.append(f"| {name} | {files} | {tokens} |")
        else:
            lines.append("(no tracked documents)")
        if status.untracked_domains:
            lines.append(f"\nUntracked domains: {', '.join(status.untracked_domains)}")

        lines += ["", "## Uncommitted Changes"]
        if status.is_clean:
            lines.append("Working tree clean")
        else:
            for change in status.changes:
                lines.append(f"- {change.status.symbol} {change.path}")

        lines += ["", "## Branches"]
        current = status.head.branch if isinstance(status.head, Attached) else None
        head_ancestors = self.graph.ancestors(head_hash) if head_hash else set()
        for ref in self.graph.list_branches():
            marker = " (current)" if ref.name == current else ""
            line = f"- **{ref.name}**{marker} {ref.head[:7]}"
            if head_hash and ref.head != head_hash:
                branch_ancestors = self.graph.ancestors(ref.head)
                ahead = len(branch_ancestors - head_ancestors)
                behind = len(head_ancestors - branch_ancestors)
                line += f": {ahead} ahead, {behind} behind"
            if ref.description:
                line += f" ({ref.description})"
            lines.append(line)
        return "\n".join(lines) + "\n"


def _compress_text(text: str) -> str:
    out: list[str] = []
    for line in text.splitlines():
        line = line.rstrip()
        if not line and out and not out[-1]:
            continue
        out.append(line)
    return "\n".join(out)
