# ABOUTME: Validation utilities for user-submitted MCP server definitions
# ABOUTME: Errors block a write; warnings are reported alongside a successful one
import json
import shutil
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from mcporbit.models import HttpTransport, ServerConfig, StdioTransport
from mcporbit.utils.env import find_unset_env_refs


@dataclass(frozen=True)
class ValidationError:
    """Represents a validation error or warning.

    ABOUTME: Uses frozen dataclass for immutability
    ABOUTME: Severity level distinguishes between blocking errors and warnings
    """
    server_name: str
    message: str
    severity: str  # 'error' or 'warning'
    field: str | None = None


def validate_command_exists(command: str) -> ValidationError | None:
    """Warn when a command isn't on PATH.

    ABOUTME: Uses shutil.which() for cross-platform command lookup
    ABOUTME: Only a warning: the server may target another machine's toolchain
    """
    if shutil.which(command) is None:
        return ValidationError(
            server_name="",
            message=f"Command not found: {command}",
            severity="warning",
            field="command",
        )
    return None


def validate_url(url: str) -> ValidationError | None:
    """Validate that a URL is properly formatted.

    ABOUTME: Uses urllib.parse for URL parsing
    ABOUTME: Requires HTTP or HTTPS scheme
    """
    try:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return ValidationError(
                server_name="",
                message=f"URL must use HTTP or HTTPS scheme: {url}",
                severity="error",
                field="url",
            )
        if not parsed.netloc:
            return ValidationError(
                server_name="",
                message=f"URL missing host/domain: {url}",
                severity="error",
                field="url",
            )
    except ValueError as e:
        return ValidationError(
            server_name="",
            message=f"Invalid URL format '{url}': {e}",
            severity="error",
            field="url",
        )
    return None


def _env_warnings(name: str, value: str, where: str) -> list[ValidationError]:
    return [
        ValidationError(
            server_name=name,
            message=f"Environment variable '${var_name}' not set (referenced in {where})",
            severity="warning",
            field=where.split(".")[0],
        )
        for var_name in find_unset_env_refs(value)
    ]


def validate_server_config(config: ServerConfig) -> list[ValidationError]:
    """Validate an MCP server definition.

    ABOUTME: For stdio: command must be non-empty; missing binary is a warning
    ABOUTME: For http: URL must be http(s) with a host
    ABOUTME: Unset ${VAR} references anywhere produce warnings

    Returns:
        List of ValidationError instances (empty if valid)
    """
    errors: list[ValidationError] = []
    name = config.name

    if not name or not name.strip():
        errors.append(ValidationError(name, "Field 'name' is required", "error", "name"))

    transport = config.transport
    if isinstance(transport, StdioTransport):
        if not transport.command.strip():
            errors.append(ValidationError(
                name, "Field 'command' is required for stdio transport", "error", "command"
            ))
        else:
            cmd_error = validate_command_exists(transport.command)
            if cmd_error:
                errors.append(ValidationError(name, cmd_error.message, cmd_error.severity, "command"))
            errors.extend(_env_warnings(name, transport.command, "command"))
        for arg in transport.args or []:
            errors.extend(_env_warnings(name, arg, "args"))
    elif isinstance(transport, HttpTransport):
        url_error = validate_url(transport.url)
        if url_error:
            errors.append(ValidationError(name, url_error.message, url_error.severity, "url"))
        errors.extend(_env_warnings(name, transport.url, "url"))
        for key, value in (transport.headers or {}).items():
            errors.extend(_env_warnings(name, value, f"headers.{key}"))

    for key, value in (config.env or {}).items():
        errors.extend(_env_warnings(name, value, f"env.{key}"))

    return errors


def parse_endpoint(name: str, transport: str, endpoint: str | dict[str, Any]) -> ServerConfig:
    """Turn a user-supplied endpoint (JSON text or dict) into a ServerConfig.

    ABOUTME: Checks JSON shape only; URL and command checks live in validate_server_config

    Raises:
        ValueError: With a message naming the offending field
    """
    if transport not in ("stdio", "http"):
        raise ValueError(f"Field 'transport' has invalid value '{transport}'. Must be 'stdio' or 'http'.")

    if isinstance(endpoint, str):
        try:
            data = json.loads(endpoint)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in endpoint configuration: {e}") from e
    else:
        data = endpoint

    if not isinstance(data, dict):
        raise ValueError("Endpoint configuration must be a JSON object")

    for key in ("env", "headers"):
        if key in data and (not isinstance(data[key], dict)):
            raise ValueError(f"Field '{key}' must be an object")
    if "args" in data and not isinstance(data["args"], list):
        raise ValueError("Field 'args' must be an array")

    if transport == "stdio":
        fields = {k: data[k] for k in ("command", "args", "cwd", "env") if data.get(k) is not None}
    else:
        fields = {k: data[k] for k in ("url", "headers", "env") if data.get(k) is not None}

    return ServerConfig.from_dict({**fields, "type": transport}, name=name)
