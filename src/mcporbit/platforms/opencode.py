# OpenCode platform adapter
import json
from pathlib import Path
from typing import Any

from mcporbit.models import (
    AdapterCapabilities,
    ApplyResult,
    Binding,
    Candidate,
    ClientConfig,
    ClientType,
    DiscoverResult,
    HttpTransport,
    InstallationStatus,
    Server,
    ServerConfig,
    SourceSnapshot,
    StdioTransport,
)
from mcporbit.platforms.base import (
    bound_servers,
    discover_file,
    hash_block,
    merge_write,
    optional_map,
    optional_str,
    probe_installation,
    sha256_text,
)
from mcporbit.utils import jsonc


def _server_block(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    block = raw.get("mcp")
    if not isinstance(block, dict):
        block = raw.get("mcpServers")
    return block if isinstance(block, dict) else None


class OpenCodeAdapter:
    """Adapter for OpenCode (~/.config/opencode/opencode.json).

    ABOUTME: Servers live under 'mcp' with type local/remote
    ABOUTME: Local command is one array: binary followed by args
    ABOUTME: Has no working-directory field, so cwd is not written
    """

    client = ClientType.OPENCODE
    capabilities = AdapterCapabilities(supports_enable_flag=True, supports_env_expansion=True)

    def __init__(self, config_path: Path | None = None, backup_dir: Path | None = None) -> None:
        self._config_path = (
            config_path if config_path else Path.home() / ".config" / "opencode" / "opencode.json"
        )
        self._backup_dir = backup_dir

    def global_config_path(self) -> Path:
        return self._config_path

    def discover(self, config_path: Path | None = None) -> DiscoverResult:
        return discover_file(
            self.client,
            config_path or self._config_path,
            jsonc.loads,
            self.normalize,
            self.hash_mcp_block,
        )

    def normalize(self, snapshot: SourceSnapshot, raw: Any) -> list[Candidate]:
        block = _server_block(raw)
        if block is None:
            return []

        candidates: list[Candidate] = []
        for name, entry in block.items():
            if not isinstance(entry, dict):
                continue
            config = self._entry_to_config(name, entry)
            if config is None:
                continue
            candidates.append(Candidate(
                config=config,
                client=self.client,
                enabled="off" if entry.get("enabled") is False else "on",
                snapshot=snapshot,
            ))
        return candidates

    @staticmethod
    def _entry_to_config(name: str, entry: dict[str, Any]) -> ServerConfig | None:
        env = optional_map(entry.get("environment"))
        if env is None:
            env = optional_map(entry.get("env"))

        if entry.get("type") == "remote" or entry.get("url"):
            url = optional_str(entry.get("url"))
            if not url:
                return None
            transport = HttpTransport(url=url, headers=optional_map(entry.get("headers")))
            return ServerConfig(name=name, transport=transport, env=env)

        command = entry.get("command")
        if isinstance(command, list):
            parts = [str(part) for part in command]
        elif isinstance(command, str) and command:
            parts = [command]
        else:
            return None
        if not parts or not parts[0]:
            return None

        transport = StdioTransport(command=parts[0], args=parts[1:] or None)
        return ServerConfig(name=name, transport=transport, env=env)

    def hash_mcp_block(self, content: str) -> str:
        try:
            parsed = jsonc.loads(content)
        except ValueError:
            return sha256_text(content)
        return hash_block(_server_block(parsed))

    def compile(self, servers: list[Server], bindings: list[Binding]) -> ClientConfig:
        mcp: dict[str, Any] = {}
        for server, binding in bound_servers(self.client, servers, bindings):
            transport = server.transport
            entry: dict[str, Any]
            if isinstance(transport, StdioTransport):
                entry = {"type": "local", "command": [transport.command, *(transport.args or [])]}
                if server.env is not None:
                    entry["environment"] = server.env
            else:
                entry = {"type": "remote", "url": transport.url}
                if transport.headers is not None:
                    entry["headers"] = transport.headers
            entry["enabled"] = binding.enabled == "on"
            mcp[server.name] = entry

        return ClientConfig(
            file_path=self._config_path,
            content=json.dumps({"mcp": mcp}, indent=2),
            format="json",
        )

    def render(self, config: ClientConfig, existing: str | None) -> str:
        """Replace the 'mcp' block, keeping the rest of the file as written."""
        mcp = json.loads(config.content).get("mcp", {})

        text = existing if existing and existing.strip() else "{}\n"
        try:
            parsed = jsonc.loads(text)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            text = "{}\n"

        return jsonc.set_value(text, ["mcp"], mcp)

    def apply(self, config: ClientConfig, backup: bool = False) -> ApplyResult:
        return merge_write(self, config, backup, self._backup_dir)

    def is_installed(self) -> InstallationStatus:
        return probe_installation("opencode", self._config_path)
