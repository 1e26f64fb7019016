"""Resolve Obsidian-style ``[[wikilinks]]`` to tracked document paths."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from gitnu.errors import WikilinkAmbiguous, WikilinkNotFound
from gitnu.models import DOMAINS_DIR
from gitnu.vault.snapshot import tracked_paths


def _strip(link: str) -> str:
    name = link.strip()
    if name.startswith("[[") and name.endswith("]]"):
        name = name[2:-2]
    # [[name|alias]] and [[name#heading]] point at the same document
    name = name.split("|", 1)[0].split("#", 1)[0]
    return name.strip()


def resolve_wikilink(vault_root: Path, link: str) -> str:
    """``[[auth/spec]]`` or ``[[spec]]`` -> ``domains/auth/spec.md``."""
    name = _strip(link)
    if not name:
        raise WikilinkNotFound(link)

    tracked = tracked_paths(vault_root)
    if "/" in name:
        for candidate in (f"{DOMAINS_DIR}/{name}.md", f"{DOMAINS_DIR}/{name}"):
            if candidate in tracked:
                return candidate
        raise WikilinkNotFound(link)

    matches = [p for p in tracked if PurePosixPath(p).stem == name or PurePosixPath(p).name == name]
    if not matches:
        raise WikilinkNotFound(link)
    if len(matches) > 1:
        raise WikilinkAmbiguous(link, matches)
    return matches[0]


def resolve_target(vault_root: Path, text: str) -> str:
    """Resolve a wikilink, or pass a plain vault-relative path through."""
    text = text.strip()
    if text.startswith("[[") and text.endswith("]]"):
        return resolve_wikilink(vault_root, text)
    return text.strip("/")
