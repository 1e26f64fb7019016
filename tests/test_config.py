"""Tests for configuration loading."""

from pathlib import Path

import pytest

from gitnu.config import default_author, load_config, render_default_config
from gitnu.models import Agent, Human


class TestConfig:
    def test_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "missing.toml")
        assert config.core.vault_name == "unnamed"
        assert config.core.default_branch == "main"
        assert config.context.max_tokens == 100_000
        assert config.context.compress_snapshots is True
        assert config.context.lock_timeout == 10.0
        assert config.agent.default_author == "agent"
        assert config.pins.always_load == []
        assert config.pins.never_load == ["domains/archive/*"]
        assert config.log_level == "INFO"

    def test_no_path(self):
        config = load_config()
        assert config.context.max_tokens == 100_000

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "config.toml"
        toml_path.write_text("""
[core]
vault_name = "research"
default_branch = "trunk"

[context]
max_tokens = 5000
compress_snapshots = false

[pins]
always_load = ["domains/core"]
never_load = []
""")
        config = load_config(toml_path)
        assert config.core.vault_name == "research"
        assert config.core.default_branch == "trunk"
        assert config.context.max_tokens == 5000
        assert config.context.compress_snapshots is False
        assert config.pins.always_load == ["domains/core"]
        assert config.pins.never_load == []

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("GITNU_MAX_TOKENS", "42")
        monkeypatch.setenv("GITNU_LOCK_TIMEOUT", "0.5")
        monkeypatch.setenv("GITNU_MODEL", "local-model")
        monkeypatch.setenv("GITNU_LOG_LEVEL", "DEBUG")

        config = load_config()
        assert config.context.max_tokens == 42
        assert config.context.lock_timeout == 0.5
        assert config.agent.model_hint == "local-model"
        assert config.log_level == "DEBUG"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("GITNU_MAX_TOKENS", "7")
        toml_path = tmp_path / "config.toml"
        toml_path.write_text("[context]\nmax_tokens = 5000\n")
        config = load_config(toml_path)
        assert config.context.max_tokens == 7  # env wins

    def test_rendered_default_round_trips(self, tmp_path: Path):
        toml_path = tmp_path / "config.toml"
        toml_path.write_text(render_default_config('my "vault"'))
        config = load_config(toml_path)
        assert config.core.vault_name == 'my "vault"'
        assert config.pins.never_load == ["domains/archive/*"]


class TestDefaultAuthor:
    def test_agent(self):
        author = default_author(load_config(), session_id="s-1")
        assert author == Agent(model="claude-3-5-sonnet", session_id="s-1")

    def test_human_uses_user(self, monkeypatch):
        monkeypatch.setenv("GITNU_AUTHOR", "human")
        monkeypatch.setenv("USER", "ada")
        assert default_author(load_config()) == Human(name="ada")

    def test_invalid(self, monkeypatch):
        monkeypatch.setenv("GITNU_AUTHOR", "robot")
        with pytest.raises(ValueError, match="Invalid author type"):
            default_author(load_config())
