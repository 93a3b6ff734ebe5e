# Claude Code platform adapter
import json
from collections import Counter
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


class ClaudeAdapter:
    """Adapter for Claude Code (~/.claude.json).

    ABOUTME: Servers live under 'mcpServers'; enablement is per project
    ABOUTME: via projects.<path>.disabledMcpServers
    """

    client = ClientType.CLAUDE_CODE
    capabilities = AdapterCapabilities(supports_enable_flag=True, supports_env_expansion=True)

    def __init__(self, config_path: Path | None = None, backup_dir: Path | None = None) -> None:
        """Initialize adapter with optional custom config path.

        ABOUTME: Defaults to ~/.claude.json if not provided
        """
        self._config_path = config_path if config_path else Path.home() / ".claude.json"
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

        A server counts as disabled only when every project lists it in
        disabledMcpServers. With no projects at all, nothing is disabled.
        """
        if not isinstance(raw, dict):
            return []
        mcp_servers = raw.get("mcpServers")
        if not isinstance(mcp_servers, dict):
            return []

        projects = raw.get("projects")
        if not isinstance(projects, dict):
            projects = {}

        disabled_counts: Counter[str] = Counter()
        for project in projects.values():
            if not isinstance(project, dict):
                continue
            disabled = project.get("disabledMcpServers")
            if isinstance(disabled, list):
                disabled_counts.update(name for name in disabled if isinstance(name, str))

        total_projects = len(projects)

        candidates: list[Candidate] = []
        for name, entry in mcp_servers.items():
            if not isinstance(entry, dict):
                continue
            config = self._entry_to_config(name, entry)
            if config is None:
                continue
            is_disabled = total_projects > 0 and disabled_counts[name] >= total_projects
            candidates.append(Candidate(
                config=config,
                client=self.client,
                enabled="off" if is_disabled else "on",
                snapshot=snapshot,
            ))
        return candidates

    @staticmethod
    def _entry_to_config(name: str, entry: dict[str, Any]) -> ServerConfig | None:
        env = optional_map(entry.get("env"))
        command = optional_str(entry.get("command"))
        if command:
            transport = StdioTransport(
                command=command,
                args=optional_list(entry.get("args")),
                cwd=optional_str(entry.get("cwd")),
            )
            return ServerConfig(name=name, transport=transport, env=env)

        url = optional_str(entry.get("url"))
        if url:
            transport = HttpTransport(url=url, headers=optional_map(entry.get("headers")))
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
        """Render bound servers plus enable/disable lists.

        ABOUTME: The lists are consumed by render() to edit project entries
        """
        mcp_servers: dict[str, Any] = {}
        to_disable: list[str] = []
        to_enable: list[str] = []

        for server, binding in bound_servers(self.client, servers, bindings):
            mcp_servers[server.name] = self._server_to_entry(server)
            if binding.enabled == "off":
                to_disable.append(server.name)
            else:
                to_enable.append(server.name)

        content = {
            "mcpServers": mcp_servers,
            "serversToDisable": to_disable,
            "serversToEnable": to_enable,
        }
        return ClientConfig(
            file_path=self._config_path,
            content=json.dumps(content, indent=2),
            format="jsonc",
        )

    @staticmethod
    def _server_to_entry(server: Server) -> dict[str, Any]:
        transport = server.transport
        entry: dict[str, Any]
        if isinstance(transport, StdioTransport):
            entry = {"command": transport.command}
            if transport.args is not None:
                entry["args"] = transport.args
            if transport.cwd is not None:
                entry["cwd"] = transport.cwd
        else:
            entry = {"type": "http", "url": transport.url}
            if transport.headers is not None:
                entry["headers"] = transport.headers
        if server.env is not None:
            entry["env"] = server.env
        return entry

    def render(self, config: ClientConfig, existing: str | None) -> str:
        """Replace mcpServers and fold enable state into each project.

        ABOUTME: Comments and unrelated keys in the file survive
        ABOUTME: An unparseable existing file is treated as empty
        """
        compiled = json.loads(config.content)
        mcp_servers: dict[str, Any] = compiled.get("mcpServers", {})
        to_disable: list[str] = compiled.get("serversToDisable", [])
        to_enable = set(compiled.get("serversToEnable", []))

        text = existing if existing and existing.strip() else "{}\n"
        try:
            parsed = jsonc.loads(text)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            text, parsed = "{}\n", {}

        text = jsonc.set_value(text, ["mcpServers"], mcp_servers)

        projects = parsed.get("projects")
        if not isinstance(projects, dict):
            return text

        known = set(mcp_servers)
        for project_path, project in projects.items():
            if not isinstance(project, dict):
                continue
            current = project.get("disabledMcpServers")
            disabled = [n for n in current if isinstance(n, str)] if isinstance(current, list) else []
            for name in to_disable:
                if name not in disabled:
                    disabled.append(name)
            disabled = [n for n in disabled if n not in to_enable and n in known]

            if current is None and not disabled:
                continue
            text = jsonc.set_value(text, ["projects", project_path, "disabledMcpServers"], disabled)

        return text

    def apply(self, config: ClientConfig, backup: bool = False) -> ApplyResult:
        return merge_write(self, config, backup, self._backup_dir)

    def is_installed(self) -> InstallationStatus:
        return probe_installation("claude", self._config_path)
