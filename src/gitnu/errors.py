"""Error taxonomy for vault operations.

Every failure the engine can surface is a ``GitnuError`` subclass carrying a
stable ``code`` and the identifiers needed to act on it. Library code only
raises; the entry point renders ``to_dict()`` / ``str()`` and exits non-zero.
"""

from __future__ import annotations

from typing import Any


class GitnuError(Exception):
    """Base class for all vault errors."""

    code: str = "GITNU_ERROR"
    is_retryable: bool = False

    def __init__(self, message: str, *, head: str | None = None, **details: Any) -> None:
        self.message = message
        self.head = head
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.head:
            return f"{self.message} (HEAD: {self.head})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.head:
            data["head"] = self.head
        if self.details:
            data["details"] = dict(self.details)
        data["retryable"] = self.is_retryable
        return data


class NotFound(GitnuError):
    """A referenced object, commit, branch or path does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str, **kwargs: Any) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found", kind=kind, identifier=identifier, **kwargs)


class VaultNotFound(NotFound):
    code = "VAULT_NOT_FOUND"

    def __init__(self, start: str) -> None:
        super().__init__("vault", start)
        self.message = (
            f"No gitnu vault found in '{start}' or its parents. "
            "Run 'gnu init' to create one."
        )


class AlreadyExists(GitnuError):
    code = "ALREADY_EXISTS"

    def __init__(self, kind: str, identifier: str, **kwargs: Any) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' already exists", kind=kind, identifier=identifier, **kwargs)


class InvalidName(GitnuError):
    code = "INVALID_NAME"


class AmbiguousRef(GitnuError):
    """A short reference matches more than one candidate."""

    code = "AMBIGUOUS_REF"

    def __init__(self, ref: str, candidates: list[str], **kwargs: Any) -> None:
        self.ref = ref
        self.candidates = candidates
        shown = ", ".join(candidates[:5])
        super().__init__(f"'{ref}' is ambiguous, matches: {shown}", ref=ref, candidates=candidates, **kwargs)


class DirtyState(GitnuError):
    """A precondition on the working tree or HEAD is not met."""

    code = "DIRTY_STATE"


class StoreCorruption(GitnuError):
    """An object referenced by history is missing. Fatal, never retried."""

    code = "STORE_CORRUPTION"

    def __init__(self, message: str, object_hash: str, **kwargs: Any) -> None:
        self.object_hash = object_hash
        super().__init__(message, object_hash=object_hash, **kwargs)


class CorruptSnapshot(StoreCorruption):
    code = "CORRUPT_SNAPSHOT"


class CorruptIndex(StoreCorruption):
    """The context index file cannot be parsed; pins and exclusions are unknown."""

    code = "CORRUPT_INDEX"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Context index {path} is unreadable: {reason}", object_hash="", path=path)


class NoCommonAncestor(GitnuError):
    code = "NO_COMMON_ANCESTOR"

    def __init__(self, source: str, target: str, **kwargs: Any) -> None:
        super().__init__(
            f"No common ancestor between '{source}' and '{target}'; history is inconsistent",
            source=source,
            target=target,
            **kwargs,
        )


class VaultLocked(GitnuError):
    """Another process holds the vault lock past the configured timeout."""

    code = "VAULT_LOCKED"
    is_retryable = True

    def __init__(self, lock_path: str, timeout: float) -> None:
        super().__init__(
            f"Vault is locked by another process ({lock_path}); gave up after {timeout:.1f}s",
            lock_path=lock_path,
            timeout=timeout,
        )


class CannotDeleteCurrent(GitnuError):
    code = "CANNOT_DELETE_CURRENT"

    def __init__(self, branch: str) -> None:
        self.branch = branch
        super().__init__(
            f"Cannot delete current branch '{branch}'. Switch to another branch first.",
            head=branch,
            branch=branch,
        )


class WikilinkNotFound(NotFound):
    code = "WIKILINK_NOT_FOUND"

    def __init__(self, link: str) -> None:
        super().__init__("wikilink", link)


class WikilinkAmbiguous(AmbiguousRef):
    code = "WIKILINK_AMBIGUOUS"
