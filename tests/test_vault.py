"""Tests for the Vault handle: lifecycle, history, status and reports."""

import fcntl
from pathlib import Path

import pytest

from gitnu.errors import AlreadyExists, CorruptSnapshot, DirtyState, NotFound, VaultLocked, VaultNotFound
from gitnu.models import Attached, Commit, Detached, Human
from gitnu.vault.diff import ChangeType
from gitnu.vault.vault import Vault

SPEC = "domains/auth/spec.md"


def _drop_object(vault: Vault, commit: Commit, path: str) -> None:
    entry = vault.snapshots.load_manifest(commit.snapshot).as_map()[path]
    for p in (vault.objects.objects_dir / entry.hash[:2]).glob(f"{entry.hash}*"):
        p.unlink()


class TestLifecycle:
    def test_init_creates_layout_and_root_commit(self, vault: Vault):
        gitnu = vault.root / ".gitnu"
        for name in ("config.toml", "HEAD", "index.json", "refs/heads/main", "commits/main.jsonl"):
            assert (gitnu / name).exists(), name
        assert (vault.root / "domains").is_dir()

        log = vault.log()
        assert len(log) == 1
        assert log[0].is_root
        assert log[0].author == Human("tester")
        assert vault.config.core.vault_name == "test"

    def test_init_captures_existing_documents(self, tmp_path: Path, write):
        root = tmp_path / "existing"
        write(root, SPEC, "abc\n" * 3)
        vault = Vault.init(root, author=Human("tester"))
        root_commit = vault.log()[0]
        assert root_commit.context_summary.files_changed == 1
        assert root_commit.context_summary.token_estimate == 3
        assert vault.config.core.vault_name == "existing"

    def test_init_twice(self, vault: Vault):
        with pytest.raises(AlreadyExists):
            Vault.init(vault.root)

    def test_open_and_discover(self, vault: Vault):
        nested = vault.root / "domains" / "auth"
        nested.mkdir(parents=True)
        found = Vault.discover(nested)
        assert found.root == vault.root.resolve()
        assert Vault.open(vault.root).graph.head_commit_hash() == vault.graph.head_commit_hash()

    def test_open_missing(self, tmp_path: Path):
        with pytest.raises(VaultNotFound):
            Vault.open(tmp_path)


class TestCommit:
    def test_commit_summary(self, vault: Vault, write):
        write(vault.root, SPEC, "abc\n" * 10)
        write(vault.root, "domains/api/notes.md", "def\n")
        commit = vault.commit("add docs")

        assert commit.context_summary.domains_touched == ("api", "auth")
        assert commit.context_summary.files_changed == 2
        assert commit.context_summary.token_estimate == 11
        assert vault.resolve("HEAD") == commit.hash

    def test_nothing_to_commit(self, vault: Vault):
        with pytest.raises(DirtyState):
            vault.commit("empty")
        assert vault.commit("empty", allow_empty=True).message == "empty"

    def test_agent_author_with_session(self, vault: Vault, write):
        write(vault.root, SPEC, "x")
        commit = vault.commit("agent work", session_id="sess-1")
        assert commit.author.session_id == "sess-1"
        assert commit.author.model == "claude-3-5-sonnet"

    def test_empty_message_rejected(self, vault: Vault):
        with pytest.raises(ValueError):
            vault.commit("   ")

    def test_locked_vault(self, vault: Vault, write, monkeypatch):
        monkeypatch.setenv("GITNU_LOCK_TIMEOUT", "0.1")
        other = Vault.open(vault.root)
        write(vault.root, SPEC, "x")
        lock_path = vault.root / ".gitnu" / "lock"
        lock_path.touch()
        with open(lock_path, "a+") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
            with pytest.raises(VaultLocked):
                other.commit("blocked")
            fcntl.flock(holder.fileno(), fcntl.LOCK_UN)
        assert other.commit("unblocked").message == "unblocked"


class TestCheckout:
    def test_checkout_restores_tree(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        first = vault.commit("v1")
        write(vault.root, SPEC, "v2")
        vault.commit("v2")

        head = vault.checkout(first.hash[:10])
        assert head == Detached(first.hash)
        assert (vault.root / SPEC).read_text() == "v1"

        assert vault.checkout("main") == Attached("main")
        assert (vault.root / SPEC).read_text() == "v2"

    def test_dirty_tree_refused(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        first = vault.commit("v1")
        write(vault.root, SPEC, "uncommitted")
        with pytest.raises(DirtyState) as exc_info:
            vault.checkout(first.hash)
        assert exc_info.value.head == "main"

        vault.checkout(vault.log()[-1].hash, force=True)
        assert not (vault.root / SPEC).exists()

    def test_checkout_resets_loaded_paths(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        vault.load([SPEC])
        with_loaded = vault.commit("loaded spec")
        vault.unload_all()
        write(vault.root, "domains/api/notes.md", "n")
        vault.commit("unloaded")
        assert vault.active_set().paths() == []

        vault.checkout(with_loaded.hash)
        assert vault.active_set().paths() == [SPEC]

    def test_missing_object_leaves_head(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        vault.commit("v1")
        vault.create_branch("feature")
        vault.checkout("feature")
        write(vault.root, "domains/api/notes.md", "feature only")
        feature = vault.commit("feature notes")
        vault.checkout("main")

        _drop_object(vault, feature, "domains/api/notes.md")
        with pytest.raises(CorruptSnapshot):
            vault.checkout("feature")
        assert vault.graph.read_head() == Attached("main")
        assert (vault.root / SPEC).read_text() == "v1"
        assert not (vault.root / "domains/api/notes.md").exists()


class TestBranches:
    def test_create_from_ref_and_delete(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        first = vault.commit("v1")
        write(vault.root, SPEC, "v2")
        vault.commit("v2")

        ref = vault.create_branch("hotfix", "HEAD~1", description="patch v1")
        assert ref.head == first.hash
        assert [b.name for b in vault.branches()] == ["hotfix", "main"]
        vault.delete_branch("hotfix")
        assert [b.name for b in vault.branches()] == ["main"]


class TestRewind:
    def test_soft_rewind_keeps_worktree(self, vault: Vault, write):
        write(vault.root, SPEC, "abc\n")
        first = vault.commit("first")
        write(vault.root, SPEC, "abc\ndef\n")
        second = vault.commit("second")

        root = vault.log()[-1]
        vault.rewind("HEAD~1", mode="soft")
        assert vault.resolve("main") == first.hash
        assert [c.hash for c in vault.log()] == [first.hash, root.hash]
        assert vault.graph.get_commit(second.hash) == second
        assert (vault.root / SPEC).read_text() == "abc\ndef\n"

        changes = vault.diff_worktree()
        assert changes.paths(ChangeType.MODIFIED) == [SPEC]
        assert changes.token_delta == 1

    def test_hard_rewind_restores(self, vault: Vault, write):
        write(vault.root, SPEC, "abc\n")
        first = vault.commit("first")
        write(vault.root, "domains/api/notes.md", "later")
        second = vault.commit("second")

        vault.rewind(first.hash)
        assert not (vault.root / "domains/api/notes.md").exists()
        vault.rewind(second.hash)
        assert (vault.root / "domains/api/notes.md").read_text() == "later"

    def test_hard_rewind_with_missing_object_keeps_ref(self, vault: Vault, write):
        write(vault.root, SPEC, "first")
        first = vault.commit("first")
        write(vault.root, SPEC, "second")
        second = vault.commit("second")

        _drop_object(vault, first, SPEC)
        with pytest.raises(CorruptSnapshot):
            vault.rewind(first.hash)
        assert vault.resolve("main") == second.hash
        assert (vault.root / SPEC).read_text() == "second"


class TestResolve:
    def test_forms(self, vault: Vault, write):
        root = vault.log()[0]
        write(vault.root, SPEC, "v1")
        first = vault.commit("v1")

        assert vault.resolve("main") == first.hash
        assert vault.resolve("HEAD") == first.hash
        assert vault.resolve("HEAD~") == root.hash
        assert vault.resolve("main~1") == root.hash
        assert vault.resolve(first.hash[:6]) == first.hash

    def test_unknown(self, vault: Vault):
        with pytest.raises(NotFound):
            vault.resolve("HEAD~5")
        with pytest.raises(NotFound):
            vault.resolve("nope")


class TestStatusAndReports:
    def test_status(self, vault: Vault, write):
        write(vault.root, SPEC, "v1")
        vault.commit("v1")
        write(vault.root, "domains/new/x.md", "x")
        write(vault.root, "domains/_scratch/y.md", "y")

        status = vault.status()
        assert status.head == Attached("main")
        assert status.commit.message == "v1"
        assert not status.is_clean
        assert status.changes.paths(ChangeType.ADDED) == ["domains/_scratch/y.md", "domains/new/x.md"]
        assert status.untracked_domains == ["new"]

    def test_summary(self, vault: Vault, write):
        write(vault.root, SPEC, "abc\n" * 5)
        vault.commit("auth docs")
        vault.create_branch("feature")
        write(vault.root, SPEC, "abc\n" * 6)

        summary = vault.summary()
        assert summary.startswith("# Vault Summary: test")
        assert "| auth | 1 | 5 |" in summary
        assert f"- ~ {SPEC}" in summary
        assert "**main** (current)" in summary
        assert "**feature**" in summary

    def test_render_context(self, vault: Vault, write):
        write(vault.root, SPEC, "line one   \n\n\n\nline two\n")
        write(vault.root, "domains/api/notes.md", "notes")
        vault.load([SPEC, "domains/api/notes.md"])

        rendered = vault.render_context()
        assert rendered.startswith("# File: domains/api/notes.md\n\nnotes")
        assert "# File: domains/auth/spec.md" in rendered

        compressed = vault.render_context(compress=True)
        assert "line one\n\nline two" in compressed
