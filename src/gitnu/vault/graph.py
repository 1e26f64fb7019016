"""Commit & branch graph.

Commits are stored twice: as objects in the object store (the canonical
encoding, so the object hash *is* the commit hash) and as JSON records in an
append-only log per branch. Traversal always goes through parent hashes in
the store; log files are only used to enumerate commits for prefix lookup.

Branch refs and HEAD are the only mutable state, each a small file published
atomically::

    .gitnu/HEAD                  "ref: refs/heads/main" | "detached: <hash>"
    .gitnu/refs/heads/<branch>   "<hash>\\n<optional description>"
    .gitnu/commits/<branch>.jsonl
    .gitnu/commits/.detached.jsonl
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Literal

from gitnu.errors import (
    AlreadyExists,
    AmbiguousRef,
    CannotDeleteCurrent,
    DirtyState,
    InvalidName,
    NotFound,
    StoreCorruption,
)
from gitnu.models import Attached, Author, BranchRef, Commit, ContextSummary, Detached, Head
from gitnu.vault.fsutil import append_line, atomic_write_text
from gitnu.vault.objects import ObjectStore

logger = logging.getLogger(__name__)

RewindMode = Literal["soft", "hard"]

_HEAD_REF_PREFIX = "ref: refs/heads/"
_HEAD_DETACHED_PREFIX = "detached: "
_DETACHED_LOG = ".detached"
_BRANCH_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_FULL_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_PREFIX_RE = re.compile(r"^[0-9a-f]{4,63}$")


def validate_branch_name(name: str) -> str:
    if not _BRANCH_RE.match(name) or ".." in name or name.endswith(".lock") or name == "HEAD":
        raise InvalidName(f"Invalid branch name: {name!r}")
    return name


class CommitGraph:
    """Append-only commit history plus the mutable ref pointers."""

    def __init__(self, gitnu_dir: Path, objects: ObjectStore, tmp_dir: Path) -> None:
        self.gitnu_dir = gitnu_dir
        self.objects = objects
        self.tmp_dir = tmp_dir
        self.refs_dir = gitnu_dir / "refs" / "heads"
        self.commits_dir = gitnu_dir / "commits"
        self.head_path = gitnu_dir / "HEAD"

    def initialize(self, default_branch: str = "main") -> None:
        self.refs_dir.mkdir(parents=True, exist_ok=True)
        self.commits_dir.mkdir(parents=True, exist_ok=True)
        if not self.head_path.exists():
            self.write_head(Attached(validate_branch_name(default_branch)))

    # ── HEAD ──────────────────────────────────────────────

    def read_head(self) -> Head:
        content = self.head_path.read_text(encoding="utf-8").strip()
        if content.startswith(_HEAD_REF_PREFIX):
            return Attached(content[len(_HEAD_REF_PREFIX):].strip())
        if content.startswith(_HEAD_DETACHED_PREFIX):
            return Detached(content[len(_HEAD_DETACHED_PREFIX):].strip())
        if _FULL_HASH_RE.match(content):
            return Detached(content)
        return Attached(content)

    def write_head(self, head: Head) -> None:
        if isinstance(head, Attached):
            text = f"{_HEAD_REF_PREFIX}{head.branch}\n"
        else:
            text = f"{_HEAD_DETACHED_PREFIX}{head.commit}\n"
        atomic_write_text(self.head_path, text, tmp_dir=self.tmp_dir)

    def head_commit_hash(self) -> str | None:
        """Commit HEAD points at, or None for an attached branch with no commits."""
        head = self.read_head()
        if isinstance(head, Detached):
            return head.commit
        ref = self.read_ref(head.branch)
        return ref.head if ref else None

    # ── refs ──────────────────────────────────────────────

    def _ref_path(self, name: str) -> Path:
        return self.refs_dir / validate_branch_name(name)

    def read_ref(self, name: str) -> BranchRef | None:
        try:
            path = self._ref_path(name)
        except InvalidName:
            return None
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8").splitlines()
        if not lines:
            return None
        description = "\n".join(lines[1:]).strip() or None
        return BranchRef(name=name, head=lines[0].strip(), description=description)

    def write_ref(self, ref: BranchRef) -> None:
        text = f"{ref.head}\n"
        if ref.description:
            text += f"{ref.description}\n"
        atomic_write_text(self._ref_path(ref.name), text, tmp_dir=self.tmp_dir)

    def branch_head(self, name: str) -> str:
        ref = self.read_ref(name)
        if ref is None:
            raise NotFound("branch", name)
        return ref.head

    def list_branches(self) -> list[BranchRef]:
        if not self.refs_dir.is_dir():
            return []
        refs = []
        for path in sorted(self.refs_dir.iterdir()):
            if path.is_file():
                ref = self.read_ref(path.name)
                if ref:
                    refs.append(ref)
        return refs

    # ── commit storage ────────────────────────────────────

    def get_commit(self, commit_hash: str) -> Commit:
        """Load a commit by full hash straight from the object store."""
        try:
            raw = self.objects.get(commit_hash)
        except NotFound:
            raise NotFound("commit", commit_hash) from None
        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise NotFound("commit", commit_hash) from None
        if not isinstance(data, dict) or "snapshot" not in data or "parents" not in data:
            raise NotFound("commit", commit_hash)
        data["hash"] = commit_hash
        return Commit.from_dict(data)

    def _log_path(self, log_name: str) -> Path:
        return self.commits_dir / f"{log_name}.jsonl"

    def _append_log(self, log_name: str, commit: Commit) -> None:
        append_line(self._log_path(log_name), json.dumps(commit.to_dict(), ensure_ascii=False))

    def read_log_file(self, log_name: str) -> list[Commit]:
        """Records of one branch log in append order. A torn last line is skipped."""
        path = self._log_path(log_name)
        if not path.exists():
            return []
        commits = []
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                commits.append(Commit.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable record %s:%d (%s)", path.name, lineno, e)
        return commits

    def iter_logged_hashes(self) -> Iterator[str]:
        if not self.commits_dir.is_dir():
            return
        seen: set[str] = set()
        for path in sorted(self.commits_dir.glob("*.jsonl")):
            for commit in self.read_log_file(path.name[: -len(".jsonl")]):
                if commit.hash not in seen:
                    seen.add(commit.hash)
                    yield commit.hash

    def resolve_commit(self, ref: str) -> str:
        """Full hash or unique prefix (at least four hex chars) -> full hash."""
        ref = ref.strip().lower()
        if _FULL_HASH_RE.match(ref):
            self.get_commit(ref)
            return ref
        if not _PREFIX_RE.match(ref):
            raise NotFound("commit", ref)
        matches = sorted(h for h in self.iter_logged_hashes() if h.startswith(ref))
        if not matches:
            raise NotFound("commit", ref)
        if len(matches) > 1:
            raise AmbiguousRef(ref, matches)
        return matches[0]

    # ── mutation ──────────────────────────────────────────

    def _store(
        self,
        parents: list[str] | tuple[str, ...],
        author: Author,
        message: str,
        snapshot_hash: str,
        context_summary: ContextSummary,
        timestamp: datetime | None,
    ) -> Commit:
        if not self.objects.exists(snapshot_hash):
            raise NotFound("snapshot", snapshot_hash)
        for parent in parents:
            self.get_commit(parent)
        commit = Commit.create(
            parents=tuple(parents),
            author=author,
            message=message,
            snapshot=snapshot_hash,
            context_summary=context_summary,
            timestamp=timestamp,
        )
        stored = self.objects.put(commit.canonical_bytes())
        if stored != commit.hash:
            raise StoreCorruption(f"Commit {commit.hash} was stored as {stored}", commit.hash)
        return commit

    def commit(
        self,
        parents: list[str] | tuple[str, ...],
        author: Author,
        message: str,
        snapshot_hash: str,
        context_summary: ContextSummary,
        timestamp: datetime | None = None,
    ) -> Commit:
        """Create a commit at HEAD.

        Attached: the branch ref advances. Detached: only the detached
        pointer advances, no branch retains the commit.
        """
        head = self.read_head()
        current = self.head_commit_hash()
        expected_first = parents[0] if parents else None
        if current != expected_first:
            raise DirtyState(
                f"HEAD moved to {current[:7] if current else 'nothing'} while committing on top of "
                f"{expected_first[:7] if expected_first else 'nothing'}",
                head=head.describe(),
            )

        commit = self._store(parents, author, message, snapshot_hash, context_summary, timestamp)
        if isinstance(head, Attached):
            previous = self.read_ref(head.branch)
            self._append_log(head.branch, commit)
            self.write_ref(
                BranchRef(
                    name=head.branch,
                    head=commit.hash,
                    description=previous.description if previous else None,
                )
            )
            logger.info("[%s %s] %s", head.branch, commit.short, message.splitlines()[0] if message else "")
        else:
            self._append_log(_DETACHED_LOG, commit)
            self.write_head(Detached(commit.hash))
            logger.info("[detached %s] %s", commit.short, message.splitlines()[0] if message else "")
        return commit

    def commit_to_branch(
        self,
        branch: str,
        parents: list[str] | tuple[str, ...],
        author: Author,
        message: str,
        snapshot_hash: str,
        context_summary: ContextSummary,
        timestamp: datetime | None = None,
    ) -> Commit:
        """Create a commit on ``branch`` regardless of where HEAD is."""
        ref = self.read_ref(branch)
        if ref is None:
            raise NotFound("branch", branch)
        if not parents or parents[0] != ref.head:
            raise DirtyState(f"Branch '{branch}' moved to {ref.head[:7]} during the operation")
        commit = self._store(parents, author, message, snapshot_hash, context_summary, timestamp)
        self._append_log(branch, commit)
        self.write_ref(BranchRef(name=branch, head=commit.hash, description=ref.description))
        logger.info("[%s %s] %s", branch, commit.short, message.splitlines()[0] if message else "")
        return commit

    def create_branch(self, name: str, from_commit: str, description: str | None = None) -> BranchRef:
        validate_branch_name(name)
        if self.read_ref(name) is not None:
            raise AlreadyExists("branch", name)
        self.get_commit(from_commit)
        ref = BranchRef(name=name, head=from_commit, description=description)
        self.write_ref(ref)
        logger.info("Created branch '%s' at %s", name, from_commit[:7])
        return ref

    def delete_branch(self, name: str) -> None:
        """Remove the ref only; the branch log and its commits stay."""
        if self.read_ref(name) is None:
            raise NotFound("branch", name)
        head = self.read_head()
        if isinstance(head, Attached) and head.branch == name:
            raise CannotDeleteCurrent(name)
        self._ref_path(name).unlink()
        logger.info("Deleted branch '%s'", name)

    def checkout(self, target: str) -> Head:
        """Point HEAD at a branch (attached) or a commit (detached)."""
        if self.read_ref(target) is not None:
            head: Head = Attached(target)
        else:
            commit_hash = self.resolve_commit(target)
            heads = [ref.name for ref in self.list_branches() if ref.head == commit_hash]
            current = self.read_head()
            if isinstance(current, Attached) and current.branch in heads:
                head = current
            elif heads:
                head = Attached(heads[0])
            else:
                head = Detached(commit_hash)
        self.write_head(head)
        logger.info("HEAD is now %s", head.describe())
        return head

    def move_head(self, commit_hash: str) -> Head:
        """Move the current branch ref (or the detached pointer) to ``commit_hash``."""
        self.get_commit(commit_hash)
        head = self.read_head()
        if isinstance(head, Attached):
            previous = self.read_ref(head.branch)
            self.write_ref(
                BranchRef(
                    name=head.branch,
                    head=commit_hash,
                    description=previous.description if previous else None,
                )
            )
        else:
            head = Detached(commit_hash)
            self.write_head(head)
        return head

    def rewind(self, commit_hash: str, mode: RewindMode = "hard") -> Commit:
        """Move the current ref back; nothing is deleted or truncated."""
        if mode not in ("soft", "hard"):
            raise ValueError(f"Unknown rewind mode: {mode!r}")
        commit = self.get_commit(commit_hash)
        head = self.move_head(commit.hash)
        logger.info("Rewound %s to %s (%s)", head.describe(), commit.short, mode)
        return commit

    # ── traversal ─────────────────────────────────────────

    def first_parent_chain(self, start: str) -> Iterator[Commit]:
        current: str | None = start
        while current:
            commit = self.get_commit(current)
            yield commit
            current = commit.parents[0] if commit.parents else None

    def log(self, branch: str | None = None, limit: int | None = None) -> list[Commit]:
        """First-parent history, most recent first."""
        start = self.branch_head(branch) if branch else self.head_commit_hash()
        if start is None:
            return []
        commits = []
        for commit in self.first_parent_chain(start):
            if limit is not None and len(commits) >= limit:
                break
            commits.append(commit)
        return commits

    def ancestors(self, commit_hash: str) -> set[str]:
        """Every commit reachable through any parent, including the start."""
        seen = {commit_hash}
        queue: deque[str] = deque([commit_hash])
        while queue:
            for parent in self.get_commit(queue.popleft()).parents:
                if parent not in seen:
                    seen.add(parent)
                    queue.append(parent)
        return seen

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return ancestor in self.ancestors(descendant)
