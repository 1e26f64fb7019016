"""Configuration loading from environment variables and .gitnu/config.toml."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from gitnu.models import Agent, Author, Human

CONFIG_FILENAME = "config.toml"
_DEFAULT_NEVER_LOAD = ["domains/archive/*"]


@dataclass
class CoreConfig:
    """Vault identity."""

    vault_name: str = "unnamed"
    default_branch: str = "main"


@dataclass
class ContextConfig:
    """Context budget and storage behaviour."""

    max_tokens: int = 100_000
    compress_snapshots: bool = True
    lock_timeout: float = 10.0


@dataclass
class AgentConfig:
    """Defaults for commit authorship."""

    default_author: str = "agent"
    model_hint: str = "claude-3-5-sonnet"


@dataclass
class PinsConfig:
    """Vault-wide pins and exclusions, applied on top of the index."""

    always_load: list[str] = field(default_factory=list)
    never_load: list[str] = field(default_factory=lambda: list(_DEFAULT_NEVER_LOAD))


@dataclass
class GitnuConfig:
    """Top-level vault configuration. Read-only for the engine."""

    core: CoreConfig = field(default_factory=CoreConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    pins: PinsConfig = field(default_factory=PinsConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> GitnuConfig:
    """Load configuration from environment variables and an optional config.toml.

    Priority: environment variables > config.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text(encoding="utf-8"))

    core_data = file_data.get("core", {})
    context_data = file_data.get("context", {})
    agent_data = file_data.get("agent", {})
    pins_data = file_data.get("pins", {})

    config = GitnuConfig(
        core=CoreConfig(
            vault_name=core_data.get("vault_name", "unnamed"),
            default_branch=core_data.get("default_branch", "main"),
        ),
        context=ContextConfig(
            max_tokens=int(os.getenv("GITNU_MAX_TOKENS", context_data.get("max_tokens", 100_000))),
            compress_snapshots=bool(context_data.get("compress_snapshots", True)),
            lock_timeout=float(os.getenv("GITNU_LOCK_TIMEOUT", context_data.get("lock_timeout", 10.0))),
        ),
        agent=AgentConfig(
            default_author=os.getenv("GITNU_AUTHOR", agent_data.get("default_author", "agent")),
            model_hint=os.getenv("GITNU_MODEL", agent_data.get("model_hint", "claude-3-5-sonnet")),
        ),
        pins=PinsConfig(
            always_load=list(pins_data.get("always_load", [])),
            never_load=list(pins_data.get("never_load", _DEFAULT_NEVER_LOAD)),
        ),
        log_level=os.getenv("GITNU_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config


def default_author(config: GitnuConfig, session_id: str | None = None) -> Author:
    """Build the commit author the config asks for."""
    kind = config.agent.default_author.lower()
    if kind == "human":
        return Human(name=os.getenv("USER") or "user")
    if kind == "agent":
        return Agent(model=config.agent.model_hint, session_id=session_id)
    raise ValueError(f"Invalid author type: {config.agent.default_author}. Use 'human' or 'agent'")


def render_default_config(vault_name: str, default_branch: str = "main") -> str:
    """TOML text written by ``Vault.init``."""
    never = ", ".join(f'"{p}"' for p in _DEFAULT_NEVER_LOAD)
    return (
        f"[core]\n"
        f"vault_name = {json.dumps(vault_name)}\n"
        f"default_branch = {json.dumps(default_branch)}\n"
        f"\n"
        f"[context]\n"
        f"max_tokens = 100000\n"
        f"compress_snapshots = true\n"
        f"lock_timeout = 10.0\n"
        f"\n"
        f"[agent]\n"
        f'default_author = "agent"\n'
        f'model_hint = "claude-3-5-sonnet"\n'
        f"\n"
        f"[pins]\n"
        f"always_load = []\n"
        f"never_load = [{never}]\n"
    )
