# Gemini CLI platform adapter
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
    optional_list,
    optional_map,
    optional_str,
    probe_installation,
    sha256_text,
)
from mcporbit.utils import jsonc


def _name_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


class GeminiAdapter:
    """Adapter for Gemini CLI (~/.gemini/settings.json).

    ABOUTME: Servers live under 'mcpServers'
    ABOUTME: Disabled servers are listed in mcp.excluded
    """

    client = ClientType.GEMINI_CLI
    capabilities = AdapterCapabilities(supports_enable_flag=True, supports_env_expansion=True)

    def __init__(self, config_path: Path | None = None, backup_dir: Path | None = None) -> None:
        """Initialize adapter with optional custom config path.

        ABOUTME: Defaults to ~/.gemini/settings.json if not provided
        """
        self._config_path = config_path if config_path else Path.home() / ".gemini" / "settings.json"
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
        """Map mcpServers entries to candidates.

        Enablement: an mcp.allowed list wins when present, otherwise
        mcp.excluded, otherwise a per-entry enabled: false.
        """
        if not isinstance(raw, dict):
            return []
        mcp_servers = raw.get("mcpServers")
        if not isinstance(mcp_servers, dict):
            return []

        mcp_settings = raw.get("mcp") if isinstance(raw.get("mcp"), dict) else {}
        allowed = _name_list(mcp_settings.get("allowed"))
        excluded = _name_list(mcp_settings.get("excluded")) or []

        candidates: list[Candidate] = []
        for name, entry in mcp_servers.items():
            if not isinstance(entry, dict):
                continue
            config = self._entry_to_config(name, entry)
            if config is None:
                continue

            if allowed is not None:
                enabled = name in allowed
            else:
                enabled = name not in excluded and entry.get("enabled") is not False

            candidates.append(Candidate(
                config=config,
                client=self.client,
                enabled="on" if enabled else "off",
                snapshot=snapshot,
            ))
        return candidates

    @staticmethod
    def _entry_to_config(name: str, entry: dict[str, Any]) -> ServerConfig | None:
        env = optional_map(entry.get("env"))
        url = optional_str(entry.get("httpUrl")) or optional_str(entry.get("url"))
        if url:
            transport = HttpTransport(url=url, headers=optional_map(entry.get("headers")))
            return ServerConfig(name=name, transport=transport, env=env)

        command = optional_str(entry.get("command"))
        if command:
            transport = StdioTransport(
                command=command,
                args=optional_list(entry.get("args")),
                cwd=optional_str(entry.get("cwd")),
            )
            return ServerConfig(name=name, transport=transport, env=env)

        return None

    def hash_mcp_block(self, content: str) -> str:
        try:
            parsed = jsonc.loads(content)
        except ValueError:
            return sha256_text(content)
        block = parsed.get("mcpServers") if isinstance(parsed, dict) else None
        return hash_block(block)

    def compile(self, servers: list[Server], bindings: list[Binding]) -> ClientConfig:
        mcp_servers: dict[str, Any] = {}
        excluded: list[str] = []

        for server, binding in bound_servers(self.client, servers, bindings):
            transport = server.transport
            entry: dict[str, Any]
            if isinstance(transport, StdioTransport):
                entry = {"command": transport.command}
                if transport.args is not None:
                    entry["args"] = transport.args
                if transport.cwd is not None:
                    entry["cwd"] = transport.cwd
                if server.env is not None:
                    entry["env"] = server.env
            else:
                entry = {"url": transport.url}
                if transport.headers is not None:
                    entry["headers"] = transport.headers
            mcp_servers[server.name] = entry
            if binding.enabled == "off":
                excluded.append(server.name)

        content: dict[str, Any] = {"mcpServers": mcp_servers}
        if excluded:
            content["mcp"] = {"excluded": excluded}

        return ClientConfig(
            file_path=self._config_path,
            content=json.dumps(content, indent=2),
            format="json",
        )

    def render(self, config: ClientConfig, existing: str | None) -> str:
        """Replace mcpServers and the exclusion list.

        ABOUTME: mcp.allowed is dropped since enablement is owned here
        ABOUTME: Other mcp.* settings are left alone
        """
        compiled = json.loads(config.content)
        excluded = compiled.get("mcp", {}).get("excluded")

        text = existing if existing and existing.strip() else "{}\n"
        try:
            parsed = jsonc.loads(text)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            text = "{}\n"

        text = jsonc.set_value(text, ["mcpServers"], compiled.get("mcpServers", {}))
        text = jsonc.remove_value(text, ["mcp", "allowed"])
        if excluded:
            text = jsonc.set_value(text, ["mcp", "excluded"], excluded)
        else:
            text = jsonc.remove_value(text, ["mcp", "excluded"])

        if jsonc.loads(text).get("mcp") == {}:
            text = jsonc.remove_value(text, ["mcp"])
        return text

    def apply(self, config: ClientConfig, backup: bool = False) -> ApplyResult:
        return merge_write(self, config, backup, self._backup_dir)

    def is_installed(self) -> InstallationStatus:
        return probe_installation("gemini", self._config_path)
