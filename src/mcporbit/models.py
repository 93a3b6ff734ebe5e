# Core data models for mcporbit
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any, Literal, Protocol, Union, runtime_checkable

from mcporbit.fingerprint import calculate_fingerprint

# ABOUTME: Binding state as stored and as shown to users
Enabled = Literal["on", "off"]
ServerType = Literal["stdio", "http"]
ConfigFormat = Literal["json", "jsonc", "toml"]

# Fields compared when same-named servers disagree, in display order
CONFIG_FIELDS: tuple[str, ...] = ("url", "headers", "env", "args", "command", "cwd")


class ClientType(str, Enum):
    """Supported AI coding clients.

    ABOUTME: Member order is the adapter registry order (dedup tie-break)
    """
    CLAUDE_CODE = "claude-code"
    OPENCODE = "opencode"
    CODEX = "codex"
    GEMINI_CLI = "gemini-cli"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class StdioTransport:
    """Local process transport."""
    command: str
    args: list[str] | None = None
    cwd: str | None = None

    @property
    def type(self) -> ServerType:
        return "stdio"


@dataclass(frozen=True)
class HttpTransport:
    """Remote streamable-HTTP transport."""
    url: str
    headers: dict[str, str] | None = None

    @property
    def type(self) -> ServerType:
        return "http"


Transport = Union[StdioTransport, HttpTransport]


def _check_str_map(value: Any, field_name: str) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ValueError(f"Field '{field_name}' must be an object")
    return {str(k): str(v) for k, v in value.items()}


@dataclass(frozen=True)
class ServerConfig:
    """Semantic definition of an MCP server.

    ABOUTME: Transport is decided once, during normalization, as a closed variant
    ABOUTME: Absent optional fields stay None rather than empty containers
    """
    name: str
    transport: Transport
    env: dict[str, str] | None = None

    @property
    def type(self) -> ServerType:
        return self.transport.type

    @cached_property
    def fingerprint(self) -> str:
        return calculate_fingerprint(self.semantic_fields())

    def semantic_fields(self) -> dict[str, Any]:
        """Return the identity-bearing fields (never name or tags)."""
        return {
            "type": self.type,
            "command": self.field_value("command"),
            "args": self.field_value("args"),
            "cwd": self.field_value("cwd"),
            "url": self.field_value("url"),
            "headers": self.field_value("headers"),
            "env": self.env,
        }

    def field_value(self, name: str) -> Any:
        if name == "env":
            return self.env
        return getattr(self.transport, name, None)

    def with_name(self, name: str) -> "ServerConfig":
        return replace(self, name=name)

    def to_dict(self) -> dict[str, Any]:
        """Flat dict form used for conflict display and persistence.

        ABOUTME: Omits fields that are None
        """
        result: dict[str, Any] = {"name": self.name, "type": self.type}
        for key in ("command", "args", "cwd", "url", "headers"):
            value = self.field_value(key)
            if value is not None:
                result[key] = value
        if self.env is not None:
            result["env"] = self.env
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str | None = None) -> "ServerConfig":
        """Build a config from the flat dict form.

        Raises:
            ValueError: naming the offending field
        """
        if not isinstance(data, dict):
            raise ValueError("Server config must be an object")

        server_name = name if name is not None else data.get("name")
        if not isinstance(server_name, str) or not server_name:
            raise ValueError("Field 'name' is required")

        server_type = data.get("type")
        if server_type is None:
            server_type = "http" if data.get("url") else "stdio"

        env = data.get("env")
        if env is not None:
            env = _check_str_map(env, "env")

        if server_type == "stdio":
            command = data.get("command")
            if not isinstance(command, str) or not command.strip():
                raise ValueError("Field 'command' is required for stdio transport")
            args = data.get("args")
            if args is not None:
                if not isinstance(args, list):
                    raise ValueError("Field 'args' must be an array")
                args = [str(arg) for arg in args]
            cwd = data.get("cwd")
            if cwd is not None and not isinstance(cwd, str):
                raise ValueError("Field 'cwd' must be a string")
            transport: Transport = StdioTransport(command=command, args=args, cwd=cwd)
        elif server_type == "http":
            url = data.get("url")
            if not isinstance(url, str) or not url.strip():
                raise ValueError("Field 'url' is required for http transport")
            headers = data.get("headers")
            if headers is not None:
                headers = _check_str_map(headers, "headers")
            transport = HttpTransport(url=url, headers=headers)
        else:
            raise ValueError(
                f"Field 'type' has invalid value '{server_type}'. Must be 'stdio' or 'http'."
            )

        return cls(name=server_name, transport=transport, env=env)


@dataclass(frozen=True)
class Server:
    """A persisted, logical MCP server."""
    id: str
    config: ServerConfig
    tags: frozenset[str] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def type(self) -> ServerType:
        return self.config.type

    @property
    def transport(self) -> Transport:
        return self.config.transport

    @property
    def env(self) -> dict[str, str] | None:
        return self.config.env

    @property
    def fingerprint(self) -> str:
        return self.config.fingerprint


@dataclass(frozen=True)
class Binding:
    """A (server, client) association with an enabled flag."""
    id: str
    server_id: str
    client: ClientType
    enabled: Enabled = "on"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SourceSnapshot:
    """Last-seen state of one client config file.

    ABOUTME: hash covers only the MCP-server block, not the whole file
    """
    client: ClientType
    path: Path
    hash: str
    mtime: float
    scanned_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class Candidate:
    """A discovered, not yet committed (server, binding) proposal."""
    config: ServerConfig
    client: ClientType
    enabled: Enabled = "on"
    snapshot: SourceSnapshot | None = None
    # Set by "separate" resolutions so renamed copies never collapse
    keep_distinct: bool = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def fingerprint(self) -> str:
        return self.config.fingerprint


@dataclass
class DiscoverResult:
    candidates: list[Candidate] = field(default_factory=list)
    snapshots: list[SourceSnapshot] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ClientConfig:
    """Compiled, client-native config text."""
    file_path: Path
    content: str
    format: ConfigFormat


@dataclass
class ApplyResult:
    success: bool
    file_path: Path
    backup_path: Path | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class InstallationStatus:
    installed: bool
    config_path: Path | None = None
    binary_path: str | None = None


@dataclass(frozen=True)
class AdapterCapabilities:
    supports_enable_flag: bool
    supports_env_expansion: bool
    is_read_only: bool = False


@runtime_checkable
class ClientAdapter(Protocol):
    """Protocol for client-specific config adapters.

    ABOUTME: Defines interface all client adapters must implement
    ABOUTME: Adapters hold no state across calls beyond their config path
    """

    client: ClientType
    capabilities: AdapterCapabilities

    def global_config_path(self) -> Path:
        """Path of the client's global config file."""
        ...

    def discover(self, config_path: Path | None = None) -> DiscoverResult:
        """Read and normalize the client's config. Never raises."""
        ...

    def normalize(self, snapshot: SourceSnapshot, raw: Any) -> list[Candidate]:
        """Map the client-native structure to candidates."""
        ...

    def hash_mcp_block(self, content: str) -> str:
        """Hash only the MCP-server block of a config file's text."""
        ...

    def compile(self, servers: list[Server], bindings: list[Binding]) -> ClientConfig:
        """Render the registry in the client's native format."""
        ...

    def render(self, config: ClientConfig, existing: str | None) -> str:
        """Merge compiled config into existing file text."""
        ...

    def apply(self, config: ClientConfig, backup: bool = False) -> ApplyResult:
        """Merge-write compiled config to disk. Never raises."""
        ...

    def is_installed(self) -> InstallationStatus:
        """Probe binary and config file presence. Never raises."""
        ...
