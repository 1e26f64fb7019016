"""Entry point: python -m gitnu <command>

- "init [name]":       Create a vault in the current directory
- "status":            HEAD, pending changes, active context
- "log [limit]":       First-parent history of HEAD
- "summary":           Markdown session summary
- "context [compress]": Render the active context as one document
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from gitnu.config import load_config
from gitnu.errors import GitnuError
from gitnu.vault.vault import Vault


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _print_status(vault: Vault) -> None:
    status = vault.status()
    head = f"On {status.head.describe()}"
    if status.commit:
        head += f" ({status.commit.short})"
    print(head)
    if status.is_clean:
        print("Working tree clean")
    else:
        print(f"Changes ({status.changes.token_delta:+d} tokens):")
        for change in status.changes:
            print(f"  {change.status.symbol} {change.path}")
    if status.untracked_domains:
        print(f"Untracked domains: {', '.join(status.untracked_domains)}")
    over = " OVER BUDGET" if status.active.over_budget else ""
    print(f"Active context: {len(status.active.entries)} files, {status.active.total_tokens}/{status.active.budget} tokens{over}")


def _print_log(vault: Vault, limit: int | None) -> None:
    for commit in vault.log(limit=limit):
        first_line = commit.message.splitlines()[0] if commit.message else ""
        marker = " (merge)" if commit.is_merge else ""
        print(f"{commit.short} {commit.timestamp:%Y-%m-%d %H:%M} {commit.author.display()}{marker}  {first_line}")


def _run(cmd: str, args: list[str]) -> None:
    if cmd == "init":
        _setup_logging(load_config().log_level)
        Vault.init(Path.cwd(), name=args[0] if args else None)
        print(f"Initialized empty gitnu vault in {Path.cwd() / '.gitnu'}")
        return

    vault = Vault.discover()
    _setup_logging(vault.config.log_level)
    if cmd == "status":
        _print_status(vault)
    elif cmd == "log":
        _print_log(vault, int(args[0]) if args else None)
    elif cmd == "summary":
        print(vault.summary(), end="")
    elif cmd == "context":
        print(vault.render_context(compress=bool(args and args[0] == "compress")))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "status"
    if cmd not in ("init", "status", "log", "summary", "context"):
        print("Usage: python -m gitnu [init|status|log|summary|context]")
        print("  init [name]         Create a vault in the current directory")
        print("  status              HEAD, pending changes, active context (default)")
        print("  log [limit]         History of HEAD")
        print("  summary             Markdown session summary")
        print("  context [compress]  Render the active context")
        sys.exit(1)

    try:
        _run(cmd, sys.argv[2:])
    except GitnuError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
