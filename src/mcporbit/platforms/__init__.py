# Client adapter registry
from pathlib import Path

from mcporbit.models import ClientAdapter, ClientType
from mcporbit.platforms.claude import ClaudeAdapter
from mcporbit.platforms.codex import CodexAdapter
from mcporbit.platforms.gemini import GeminiAdapter
from mcporbit.platforms.opencode import OpenCodeAdapter

# Registry of all available client adapters, in ClientType order
ALL_ADAPTERS: dict[ClientType, type[ClientAdapter]] = {
    ClientType.CLAUDE_CODE: ClaudeAdapter,
    ClientType.OPENCODE: OpenCodeAdapter,
    ClientType.CODEX: CodexAdapter,
    ClientType.GEMINI_CLI: GeminiAdapter,
}

__all__ = [
    "ClientAdapter",
    "ClaudeAdapter",
    "OpenCodeAdapter",
    "CodexAdapter",
    "GeminiAdapter",
    "ALL_ADAPTERS",
    "get_adapter",
    "get_all_adapters",
]


def get_adapter(
    client: ClientType | str,
    config_path: Path | None = None,
    backup_dir: Path | None = None,
) -> ClientAdapter:
    """Instantiate the adapter for one client.

    Raises:
        ValueError: If the client id is unknown
    """
    client_type = ClientType(client)
    return ALL_ADAPTERS[client_type](config_path=config_path, backup_dir=backup_dir)


def get_all_adapters(
    config_paths: dict[ClientType, Path] | None = None,
    backup_dir: Path | None = None,
) -> list[ClientAdapter]:
    """Instantiate and return all client adapters.

    ABOUTME: Creates instances of all registered adapters
    ABOUTME: config_paths overrides individual clients' file locations
    """
    config_paths = config_paths or {}
    return [
        adapter_cls(config_path=config_paths.get(client), backup_dir=backup_dir)
        for client, adapter_cls in ALL_ADAPTERS.items()
    ]
