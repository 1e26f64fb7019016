"""Merge engine for accumulative knowledge documents.

Three-way merge at path granularity against the merge base. Paths touched by
only one side are taken from that side; paths both sides changed differently
are reconciled additively: frontmatter metadata is combined and the source's
contribution is appended under a visible boundary, so neither side's
knowledge is dropped. The merge commit message lists what needs review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import frontmatter

from gitnu.errors import DirtyState, NoCommonAncestor
from gitnu.models import Author, Commit, Manifest, ManifestEntry, compute_hash
from gitnu.vault.diff import diff_manifests, summarize

if TYPE_CHECKING:
    from gitnu.vault.graph import CommitGraph
    from gitnu.vault.snapshot import SnapshotEngine

logger = logging.getLogger(__name__)

MERGE_MARKER = "<!-- gitnu merge: from {branch} @ {short} -->"


def merge_metadata(ours: dict[str, Any], theirs: dict[str, Any]) -> dict[str, Any]:
    """Ours wins on scalars; lists are unioned in order; new keys are added."""
    merged = dict(ours)
    for key, value in theirs.items():
        if key not in merged:
            merged[key] = value
        elif isinstance(merged[key], list) and isinstance(value, list):
            merged[key] = merged[key] + [v for v in value if v not in merged[key]]
    return merged


def concatenate_documents(base: bytes | None, ours: bytes, theirs: bytes, marker: str) -> bytes:
    """Additive reconciliation of two divergent versions of one document."""
    try:
        base_text = base.decode("utf-8") if base is not None else None
        ours_text = ours.decode("utf-8")
        theirs_text = theirs.decode("utf-8")
    except UnicodeDecodeError:
        return ours.rstrip(b"\n") + f"\n\n{marker}\n\n".encode("utf-8") + theirs

    ours_post = frontmatter.loads(ours_text)
    theirs_post = frontmatter.loads(theirs_text)

    contribution = theirs_post.content
    if base_text is not None:
        base_body = frontmatter.loads(base_text).content
        if base_body and contribution.startswith(base_body):
            contribution = contribution[len(base_body):]

    if contribution.strip():
        body = f"{ours_post.content.rstrip()}\n\n{marker}\n\n{contribution.strip()}\n"
    else:
        body = f"{ours_post.content.rstrip()}\n"

    metadata = merge_metadata(dict(ours_post.metadata), dict(theirs_post.metadata))
    if not metadata:
        return body.encode("utf-8")
    post = frontmatter.Post(body)
    post.metadata.update(metadata)
    text = frontmatter.dumps(post)
    if not text.endswith("\n"):
        text += "\n"
    return text.encode("utf-8")


@dataclass
class MergePlan:
    """How each path changed by the source since the base is reconciled."""

    source_branch: str
    target_branch: str
    source_head: str
    target_head: str
    base: str
    entries: dict[str, ManifestEntry] = field(default_factory=dict)
    pending: dict[str, bytes] = field(default_factory=dict)
    adopted: list[str] = field(default_factory=list)
    concatenated: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def already_merged(self) -> bool:
        return self.base == self.source_head

    def message(self, squash: bool = False) -> str:
        header = f"Merge {self.source_branch} into {self.target_branch}"
        lines = [f"{header} (squashed)" if squash else header]
        details = []
        if self.adopted:
            details.append(f"Adopted: {', '.join(self.adopted)}")
        if self.concatenated:
            details.append(f"Concatenated (review): {', '.join(self.concatenated)}")
        if self.removed:
            details.append(f"Removed: {', '.join(self.removed)}")
        if details:
            lines.append("")
            lines.extend(details)
        return "\n".join(lines)


@dataclass
class MergeResult:
    commit: Commit
    plan: MergePlan

    @property
    def created(self) -> bool:
        return not self.plan.already_merged


class MergeEngine:
    def __init__(self, graph: CommitGraph, snapshots: SnapshotEngine) -> None:
        self.graph = graph
        self.snapshots = snapshots

    def merge_base(self, source_head: str, target_head: str) -> str:
        """First commit on the source's first-parent chain reachable from the target."""
        reachable = self.graph.ancestors(target_head)
        for commit in self.graph.first_parent_chain(source_head):
            if commit.hash in reachable:
                return commit.hash
        raise NoCommonAncestor(source_head, target_head)

    def _manifest(self, commit_hash: str) -> Manifest:
        return self.snapshots.load_manifest(self.graph.get_commit(commit_hash).snapshot)

    def plan(self, source_branch: str, target_branch: str) -> MergePlan:
        if source_branch == target_branch:
            raise DirtyState(f"Cannot merge branch '{source_branch}' into itself")
        source_head = self.graph.branch_head(source_branch)
        target_head = self.graph.branch_head(target_branch)
        try:
            base = self.merge_base(source_head, target_head)
        except NoCommonAncestor:
            raise NoCommonAncestor(source_branch, target_branch) from None

        plan = MergePlan(
            source_branch=source_branch,
            target_branch=target_branch,
            source_head=source_head,
            target_head=target_head,
            base=base,
        )
        target_manifest = self._manifest(target_head)
        plan.entries = target_manifest.as_map()
        if plan.already_merged:
            return plan

        base_manifest = self._manifest(base)
        ours = diff_manifests(base_manifest, target_manifest)
        theirs = diff_manifests(base_manifest, self._manifest(source_head))
        marker = MERGE_MARKER.format(branch=source_branch, short=source_head[:7])

        for change in theirs:
            path = change.path
            our_change = ours.get(path)
            if our_change is None:
                if change.new is None:
                    plan.entries.pop(path, None)
                    plan.removed.append(path)
                else:
                    plan.entries[path] = change.new
                    plan.adopted.append(path)
                continue

            theirs_entry, ours_entry = change.new, our_change.new
            if (theirs_entry and theirs_entry.hash) == (ours_entry and ours_entry.hash):
                plan.kept.append(path)
            elif theirs_entry is None:
                plan.kept.append(path)
            elif ours_entry is None:
                plan.entries[path] = theirs_entry
                plan.adopted.append(path)
            else:
                base_bytes = self.snapshots.read_blob(change.old) if change.old else None
                data = concatenate_documents(
                    base_bytes,
                    self.snapshots.read_blob(ours_entry),
                    self.snapshots.read_blob(theirs_entry),
                    marker,
                )
                plan.pending[path] = data
                plan.entries[path] = ManifestEntry(path=path, hash=compute_hash(data), size=len(data))
                plan.concatenated.append(path)
        return plan

    def merge(
        self,
        source_branch: str,
        target_branch: str,
        author: Author,
        squash: bool = False,
    ) -> MergeResult:
        """Merge ``source_branch`` into ``target_branch`` with a two-parent commit.

        A second merge with no new divergence is a no-op returning the
        target's current head. With ``squash`` the merged tree is committed
        with the target head as its only parent, so the source is not
        recorded as an ancestor and a later merge sees the same base again.
        """
        plan = self.plan(source_branch, target_branch)
        if plan.already_merged:
            logger.info("'%s' is already merged into '%s'", source_branch, target_branch)
            return MergeResult(commit=self.graph.get_commit(plan.target_head), plan=plan)

        for data in plan.pending.values():
            self.snapshots.objects.put(data, compress=self.snapshots.compress)
        manifest = Manifest(entries=tuple(plan.entries.values()))
        snapshot_hash = self.snapshots.store_manifest(manifest)

        target_commit = self.graph.get_commit(plan.target_head)
        changes = diff_manifests(self._manifest(plan.target_head), manifest)
        commit = self.graph.commit_to_branch(
            target_branch,
            parents=[plan.target_head] if squash else [plan.target_head, plan.source_head],
            author=author,
            message=plan.message(squash=squash),
            snapshot_hash=snapshot_hash,
            context_summary=summarize(changes, manifest, target_commit.context_summary.loaded),
        )
        logger.info(
            "Merged %s into %s%s: %d adopted, %d concatenated, %d removed",
            source_branch,
            target_branch,
            " (squashed)" if squash else "",
            len(plan.adopted),
            len(plan.concatenated),
            len(plan.removed),
        )
        if plan.concatenated:
            logger.warning("Review concatenated paths: %s", ", ".join(plan.concatenated))
        return MergeResult(commit=commit, plan=plan)
