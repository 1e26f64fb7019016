"""Vault data model: authors, HEAD state, manifests, commits.

Commits and manifests are frozen dataclasses with a canonical JSON encoding;
a commit's hash is the SHA-256 of its canonical encoding, so identical field
values always reproduce the same hash.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

BYTES_PER_TOKEN = 4
DOMAINS_DIR = "domains"


def estimate_tokens(byte_size: int) -> int:
    """Deterministic token proxy: a fixed bytes-per-token ratio."""
    return max(byte_size, 0) // BYTES_PER_TOKEN


def compute_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def domain_of(path: str) -> str | None:
    """'domains/auth/spec.md' -> 'auth'."""
    parts = path.split("/")
    if len(parts) >= 3 and parts[0] == DOMAINS_DIR:
        return parts[1]
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Authors ───────────────────────────────────────────────


@dataclass(frozen=True)
class Human:
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "human", "name": self.name}

    def display(self) -> str:
        return f"Human ({self.name})"


@dataclass(frozen=True)
class Agent:
    model: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "agent"}
        if self.model is not None:
            data["model"] = self.model
        if self.session_id is not None:
            data["session_id"] = self.session_id
        return data

    def display(self) -> str:
        return f"Agent ({self.model or 'unknown'})"


Author = Union[Human, Agent]


def author_from_dict(data: dict[str, Any]) -> Author:
    kind = data.get("type")
    if kind == "human":
        return Human(name=data.get("name", ""))
    if kind == "agent":
        return Agent(model=data.get("model"), session_id=data.get("session_id"))
    raise ValueError(f"Unknown author type: {kind!r}")


# ── HEAD ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Attached:
    branch: str

    def describe(self) -> str:
        return self.branch


@dataclass(frozen=True)
class Detached:
    commit: str

    def describe(self) -> str:
        return f"detached at {self.commit[:7]}"


Head = Union[Attached, Detached]


# ── Manifests ─────────────────────────────────────────────


@dataclass(frozen=True)
class ManifestEntry:
    path: str
    hash: str
    size: int

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.size)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "hash": self.hash, "size": self.size}


@dataclass(frozen=True)
class Manifest:
    """Sorted list of tracked documents at one point in time."""

    entries: tuple[ManifestEntry, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(sorted(self.entries, key=lambda e: e.path)))

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self.entries)

    @property
    def token_estimate(self) -> int:
        return sum(e.tokens for e in self.entries)

    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    def as_map(self) -> dict[str, ManifestEntry]:
        return {e.path: e for e in self.entries}

    def domains(self) -> set[str]:
        return {d for d in (domain_of(e.path) for e in self.entries) if d}

    def to_bytes(self) -> bytes:
        return canonical_json({"files": [e.to_dict() for e in self.entries]})

    @classmethod
    def from_bytes(cls, raw: bytes) -> Manifest:
        data = json.loads(raw)
        return cls(
            entries=tuple(
                ManifestEntry(path=f["path"], hash=f["hash"], size=int(f["size"]))
                for f in data.get("files", [])
            )
        )


# ── Commits ───────────────────────────────────────────────


@dataclass(frozen=True)
class ContextSummary:
    """What a commit changed and how large the committed context is."""

    domains_touched: tuple[str, ...] = ()
    files_changed: int = 0
    token_estimate: int = 0
    loaded: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "domains_touched": sorted(self.domains_touched),
            "files_changed": self.files_changed,
            "token_estimate": self.token_estimate,
            "loaded": sorted(self.loaded),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextSummary:
        return cls(
            domains_touched=tuple(sorted(data.get("domains_touched", []))),
            files_changed=int(data.get("files_changed", 0)),
            token_estimate=int(data.get("token_estimate", 0)),
            loaded=tuple(sorted(data.get("loaded", []))),
        )


@dataclass(frozen=True)
class Commit:
    hash: str
    parents: tuple[str, ...]
    timestamp: datetime
    author: Author
    message: str
    context_summary: ContextSummary
    snapshot: str

    @property
    def short(self) -> str:
        return self.hash[:7]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) == 2

    @property
    def is_root(self) -> bool:
        return not self.parents

    @staticmethod
    def _fields(
        parents: tuple[str, ...],
        timestamp: datetime,
        author: Author,
        message: str,
        context_summary: ContextSummary,
        snapshot: str,
    ) -> dict[str, Any]:
        return {
            "parents": list(parents),
            "timestamp": timestamp.isoformat(),
            "author": author.to_dict(),
            "message": message,
            "context_summary": context_summary.to_dict(),
            "snapshot": snapshot,
        }

    @classmethod
    def create(
        cls,
        parents: tuple[str, ...] | list[str],
        author: Author,
        message: str,
        snapshot: str,
        context_summary: ContextSummary,
        timestamp: datetime | None = None,
    ) -> Commit:
        parents = tuple(parents)
        if len(parents) > 2:
            raise ValueError(f"A commit has at most two parents, got {len(parents)}")
        timestamp = timestamp or utcnow()
        body = cls._fields(parents, timestamp, author, message, context_summary, snapshot)
        return cls(
            hash=compute_hash(canonical_json(body)),
            parents=parents,
            timestamp=timestamp,
            author=author,
            message=message,
            context_summary=context_summary,
            snapshot=snapshot,
        )

    def canonical_bytes(self) -> bytes:
        """Encoding whose SHA-256 is ``self.hash``."""
        return canonical_json(
            self._fields(
                self.parents,
                self.timestamp,
                self.author,
                self.message,
                self.context_summary,
                self.snapshot,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        data = {"hash": self.hash}
        data.update(
            self._fields(
                self.parents,
                self.timestamp,
                self.author,
                self.message,
                self.context_summary,
                self.snapshot,
            )
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Commit:
        return cls(
            hash=data["hash"],
            parents=tuple(data.get("parents", [])),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            author=author_from_dict(data["author"]),
            message=data.get("message", ""),
            context_summary=ContextSummary.from_dict(data.get("context_summary", {})),
            snapshot=data["snapshot"],
        )


@dataclass(frozen=True)
class BranchRef:
    name: str
    head: str
    description: str | None = None


@dataclass
class ActiveEntry:
    path: str
    tokens: int
    pinned: bool = False


@dataclass
class ActiveContext:
    """Resolved active set: (loaded ∪ pinned) minus exclusions."""

    entries: list[ActiveEntry] = field(default_factory=list)
    budget: int = 0

    @property
    def total_tokens(self) -> int:
        return sum(e.tokens for e in self.entries)

    @property
    def over_budget(self) -> bool:
        return self.budget > 0 and self.total_tokens > self.budget

    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    def __contains__(self, path: str) -> bool:
        return any(e.path == path for e in self.entries)
