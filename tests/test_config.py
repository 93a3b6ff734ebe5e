# Tests for settings loading
import json

import pytest

from mcporbit.config import get_config_path, get_data_dir, load_settings
from mcporbit.models import ClientType


def test_get_config_path(tmp_path):
    """Test settings live in the data directory."""
    assert get_data_dir() == tmp_path / "mcporbit-home"
    assert get_config_path() == tmp_path / "mcporbit-home" / "config.json"


def test_default_data_dir_without_env(tmp_path, monkeypatch):
    """Test ~/.mcporbit is used when MCPORBIT_HOME is unset."""
    monkeypatch.delenv("MCPORBIT_HOME")
    assert get_data_dir().name == ".mcporbit"


def test_load_settings_missing_file(tmp_path):
    """Test defaults when no settings file exists."""
    settings = load_settings()

    home = tmp_path / "mcporbit-home"
    assert settings.data_dir == home
    assert settings.db_path == home / "registry.db"
    assert settings.backup_dir == home / "backups"
    assert settings.backup_retention == 5
    assert settings.activity_retention_days == 7
    assert settings.client_paths == {}
    assert settings.db_url == f"sqlite:///{home / 'registry.db'}"


def test_load_full_settings(tmp_path):
    """Test every field is read from the file."""
    config_file = tmp_path / "settings.json"
    config_file.write_text(json.dumps({
        "data_dir": str(tmp_path / "data"),
        "backup_dir": str(tmp_path / "bk"),
        "backup_retention": 3,
        "activity_retention_days": 30,
        "client_paths": {
            "claude-code": str(tmp_path / "claude.json"),
            "codex": str(tmp_path / "codex.toml"),
        },
    }))

    settings = load_settings(config_file)

    assert settings.data_dir == tmp_path / "data"
    assert settings.db_path == tmp_path / "data" / "registry.db"
    assert settings.backup_dir == tmp_path / "bk"
    assert settings.backup_retention == 3
    assert settings.activity_retention_days == 30
    assert settings.client_paths == {
        ClientType.CLAUDE_CODE: tmp_path / "claude.json",
        ClientType.CODEX: tmp_path / "codex.toml",
    }


def test_db_path_env_override(tmp_path, monkeypatch):
    """Test MCPORBIT_DB_PATH wins over the file."""
    config_file = tmp_path / "settings.json"
    config_file.write_text(json.dumps({"db_path": str(tmp_path / "file.db")}))
    monkeypatch.setenv("MCPORBIT_DB_PATH", str(tmp_path / "env.db"))

    assert load_settings(config_file).db_path == tmp_path / "env.db"


def test_paths_expand_env_vars(tmp_path, monkeypatch):
    """Test ${VAR} references in paths are expanded."""
    monkeypatch.setenv("ORBIT_TEST_ROOT", str(tmp_path))
    config_file = tmp_path / "settings.json"
    config_file.write_text(json.dumps({"client_paths": {"gemini-cli": "${ORBIT_TEST_ROOT}/gemini.json"}}))

    assert load_settings(config_file).client_paths[ClientType.GEMINI_CLI] == tmp_path / "gemini.json"


def test_invalid_json(tmp_path):
    """Test malformed JSON fails fast."""
    config_file = tmp_path / "settings.json"
    config_file.write_text("{ invalid")

    with pytest.raises(json.JSONDecodeError):
        load_settings(config_file)


@pytest.mark.parametrize("data, field", [
    ([], "JSON object"),
    ({"backup_retention": 0}, "backup_retention"),
    ({"backup_retention": True}, "backup_retention"),
    ({"activity_retention_days": "7"}, "activity_retention_days"),
    ({"client_paths": []}, "client_paths"),
    ({"client_paths": {"vim": "/x"}}, "unknown client 'vim'"),
    ({"db_path": 5}, "'db_path' must be a non-empty string"),
    ({"client_paths": {"codex": "${ORBIT_NEVER_SET}/config.toml"}}, "'client_paths.codex' references unset"),
])
def test_invalid_fields(tmp_path, data, field):
    """Test bad values raise ValueError naming the problem."""
    config_file = tmp_path / "settings.json"
    config_file.write_text(json.dumps(data))

    with pytest.raises(ValueError, match=field):
        load_settings(config_file)
