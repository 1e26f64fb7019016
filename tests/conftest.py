"""Shared fixtures for vault tests."""

from pathlib import Path

import pytest

from gitnu.models import Human
from gitnu.vault.vault import Vault

GITNU_ENV = ["GITNU_MAX_TOKENS", "GITNU_LOCK_TIMEOUT", "GITNU_AUTHOR", "GITNU_MODEL", "GITNU_LOG_LEVEL"]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in GITNU_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def write():
    def _write(root: Path, rel: str, text: str) -> Path:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def vault(tmp_path: Path) -> Vault:
    return Vault.init(tmp_path / "vault", name="test", author=Human("tester"))
