# Codex CLI platform adapter
import os
from pathlib import Path
from typing import Any

import tomli
import tomli_w
import tomlkit
from tomlkit.exceptions import TOMLKitError

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
    DEFAULT_HTTP_ACCEPT,
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

# ABOUTME: Codex only speaks streamable HTTP with this flag on
RMCP_FLAG = "experimental_use_rmcp_client"


def _server_block(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    block = raw.get("mcp_servers")
    if not isinstance(block, dict):
        block = raw.get("mcpServers")
    return block if isinstance(block, dict) else None


class CodexAdapter:
    """Adapter for Codex CLI ($CODEX_HOME/config.toml or ~/.codex/config.toml).

    ABOUTME: Uses snake_case mcp_servers tables (not mcpServers)
    ABOUTME: Compiles with tomli-w, merges into the existing file with tomlkit
    """

    client = ClientType.CODEX
    capabilities = AdapterCapabilities(supports_enable_flag=True, supports_env_expansion=False)

    def __init__(self, config_path: Path | None = None, backup_dir: Path | None = None) -> None:
        self._config_path = config_path
        self._backup_dir = backup_dir

    def global_config_path(self) -> Path:
        """Resolve the config path.

        ABOUTME: $CODEX_HOME is read on every call, not cached
        """
        if self._config_path:
            return self._config_path
        codex_home = os.environ.get("CODEX_HOME")
        base = Path(codex_home) if codex_home else Path.home() / ".codex"
        return base / "config.toml"

    def discover(self, config_path: Path | None = None) -> DiscoverResult:
        return discover_file(
            self.client,
            config_path or self.global_config_path(),
            tomli.loads,
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
            env = optional_map(entry.get("env"))

            url = optional_str(entry.get("url"))
            command = optional_str(entry.get("command"))
            if url:
                headers = optional_map(entry.get("http_headers"))
                if headers is None:
                    headers = optional_map(entry.get("headers"))
                config = ServerConfig(name=name, transport=HttpTransport(url=url, headers=headers), env=env)
            elif command:
                transport = StdioTransport(
                    command=command,
                    args=optional_list(entry.get("args")),
                    cwd=optional_str(entry.get("cwd")),
                )
                config = ServerConfig(name=name, transport=transport, env=env)
            else:
                continue

            candidates.append(Candidate(
                config=config,
                client=self.client,
                enabled="off" if entry.get("enabled") is False else "on",
                snapshot=snapshot,
            ))
        return candidates

    def hash_mcp_block(self, content: str) -> str:
        try:
            parsed = tomli.loads(content)
        except tomli.TOMLDecodeError:
            return sha256_text(content)
        return hash_block(_server_block(parsed))

    def compile(self, servers: list[Server], bindings: list[Binding]) -> ClientConfig:
        """Render bound servers as mcp_servers tables.

        ABOUTME: HTTP entries get an Accept header unless one is set
        ABOUTME: The rmcp flag is emitted only when an HTTP server is bound
        """
        mcp_servers: dict[str, Any] = {}
        has_http = False

        for server, binding in bound_servers(self.client, servers, bindings):
            transport = server.transport
            entry: dict[str, Any]
            if isinstance(transport, HttpTransport):
                has_http = True
                headers = dict(transport.headers or {})
                if not any(key.lower() == "accept" for key in headers):
                    headers["Accept"] = DEFAULT_HTTP_ACCEPT
                entry = {"url": transport.url, "enabled": binding.enabled == "on", "http_headers": headers}
            else:
                entry = {"command": transport.command, "enabled": binding.enabled == "on"}
                if transport.args is not None:
                    entry["args"] = transport.args
                if transport.cwd is not None:
                    entry["cwd"] = transport.cwd
                if server.env is not None:
                    entry["env"] = server.env
            mcp_servers[server.name] = entry

        document: dict[str, Any] = {}
        if has_http:
            document[RMCP_FLAG] = True
        document["mcp_servers"] = mcp_servers

        return ClientConfig(
            file_path=self.global_config_path(),
            content=tomli_w.dumps(document),
            format="toml",
        )

    def render(self, config: ClientConfig, existing: str | None) -> str:
        """Swap the mcp_servers tables into the existing document.

        ABOUTME: Other tables, keys and comments are preserved by tomlkit
        ABOUTME: An unparseable existing file is replaced
        """
        compiled = tomli.loads(config.content)

        try:
            document = tomlkit.parse(existing) if existing else tomlkit.document()
        except TOMLKitError:
            document = tomlkit.document()

        if "mcp_servers" in document:
            del document["mcp_servers"]
        if RMCP_FLAG in compiled:
            document[RMCP_FLAG] = compiled[RMCP_FLAG]
        document["mcp_servers"] = compiled.get("mcp_servers", {})

        return tomlkit.dumps(document)

    def apply(self, config: ClientConfig, backup: bool = False) -> ApplyResult:
        return merge_write(self, config, backup, self._backup_dir)

    def is_installed(self) -> InstallationStatus:
        return probe_installation("codex", self.global_config_path())
