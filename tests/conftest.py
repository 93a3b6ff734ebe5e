# ABOUTME: Shared fixtures: a throwaway SQLite store and adapters pointed at tmp files
# ABOUTME: HOME-like environment variables are isolated for every test
from pathlib import Path

import pytest

from mcporbit.models import ClientType
from mcporbit.platforms import get_all_adapters
from mcporbit.store import Store


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCPORBIT_HOME", str(tmp_path / "mcporbit-home"))
    monkeypatch.delenv("MCPORBIT_DB_PATH", raising=False)
    monkeypatch.delenv("CODEX_HOME", raising=False)


@pytest.fixture
def store(tmp_path: Path):
    with Store.from_path(tmp_path / "registry.db") as registry_store:
        yield registry_store


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def client_paths(tmp_path: Path) -> dict[ClientType, Path]:
    base = tmp_path / "clients"
    return {
        ClientType.CLAUDE_CODE: base / ".claude.json",
        ClientType.OPENCODE: base / "opencode" / "opencode.json",
        ClientType.CODEX: base / ".codex" / "config.toml",
        ClientType.GEMINI_CLI: base / ".gemini" / "settings.json",
    }


@pytest.fixture
def adapters(client_paths: dict[ClientType, Path], backup_dir: Path):
    return get_all_adapters(client_paths, backup_dir=backup_dir)
