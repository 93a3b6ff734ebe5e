# Settings loading for mcporbit
import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from mcporbit.models import ClientType
from mcporbit.utils import resolve_settings_path

# ABOUTME: Default data directory in user's home; $MCPORBIT_HOME overrides it
DEFAULT_DATA_DIR = Path.home() / ".mcporbit"

DEFAULT_BACKUP_RETENTION = 5
DEFAULT_ACTIVITY_RETENTION_DAYS = 7


@dataclass
class Settings:
    """Runtime settings.

    ABOUTME: Paths are already expanded (~ and ${VAR})
    """
    data_dir: Path
    db_path: Path
    backup_dir: Path
    backup_retention: int = DEFAULT_BACKUP_RETENTION
    activity_retention_days: int = DEFAULT_ACTIVITY_RETENTION_DAYS
    client_paths: dict[ClientType, Path] = field(default_factory=dict)

    @property
    def db_url(self) -> str:
        return f"sqlite:///{self.db_path}"


def get_data_dir() -> Path:
    home = os.environ.get("MCPORBIT_HOME")
    return resolve_settings_path(home, "MCPORBIT_HOME") if home else DEFAULT_DATA_DIR


def get_config_path() -> Path:
    """Return the path to the mcporbit settings file.

    ABOUTME: File may not exist; defaults apply then
    """
    return get_data_dir() / "config.json"


def _positive_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"Field '{key}' must be a positive integer")
    return value


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from an optional JSON file plus environment overrides.

    ABOUTME: Missing file means all defaults
    ABOUTME: Fail-fast on malformed JSON or bad field types
    ABOUTME: $MCPORBIT_DB_PATH wins over the file's db_path

    Raises:
        json.JSONDecodeError: If JSON syntax is invalid
        ValueError: If a field has the wrong type, references an unset variable, or an unknown client id
    """
    config_path = path or get_config_path()
    data: dict = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a JSON object: {config_path}")

    data_dir = resolve_settings_path(data["data_dir"], "data_dir") if "data_dir" in data else get_data_dir()

    db_env = os.environ.get("MCPORBIT_DB_PATH")
    if db_env:
        db_path = resolve_settings_path(db_env, "MCPORBIT_DB_PATH")
    elif "db_path" in data:
        db_path = resolve_settings_path(data["db_path"], "db_path")
    else:
        db_path = data_dir / "registry.db"

    if "backup_dir" in data:
        backup_dir = resolve_settings_path(data["backup_dir"], "backup_dir")
    else:
        backup_dir = data_dir / "backups"

    raw_clients = data.get("client_paths", {})
    if not isinstance(raw_clients, dict):
        raise ValueError("Field 'client_paths' must be an object")
    client_paths: dict[ClientType, Path] = {}
    for client_id, client_path in raw_clients.items():
        try:
            client = ClientType(client_id)
        except ValueError:
            raise ValueError(f"Field 'client_paths' has unknown client '{client_id}'") from None
        client_paths[client] = resolve_settings_path(client_path, f"client_paths.{client_id}")

    return Settings(
        data_dir=data_dir,
        db_path=db_path,
        backup_dir=backup_dir,
        backup_retention=_positive_int(data, "backup_retention", DEFAULT_BACKUP_RETENTION),
        activity_retention_days=_positive_int(
            data, "activity_retention_days", DEFAULT_ACTIVITY_RETENTION_DAYS
        ),
        client_paths=client_paths,
    )
