# ABOUTME: ${VAR} references in settings paths and server definitions
# ABOUTME: Settings paths are resolved at load time; server fields are only checked, never expanded
import os
import re
from pathlib import Path

# Matches ${VAR_NAME} where VAR_NAME is uppercase with underscores
ENV_REF_PATTERN = re.compile(r'\$\{([A-Z_][A-Z0-9_]*)\}')


def find_unset_env_refs(value: str) -> list[str]:
    """Names of ${VAR} references in value that are not set."""
    return [
        match.group(1)
        for match in ENV_REF_PATTERN.finditer(value)
        if match.group(1) not in os.environ
    ]


def resolve_settings_path(value: object, field_name: str) -> Path:
    """Turn a settings path into a Path, expanding ${VAR} and ~.

    Client config files are written to whatever this returns, so an unset
    reference is an error rather than a literal '${VAR}' directory.

    Raises:
        ValueError: If value isn't a non-empty string or references an unset variable

    Examples:
        >>> resolve_settings_path("${CODEX_HOME}/config.toml", "client_paths.codex")
        PosixPath('/home/user/.codex/config.toml')
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Field '{field_name}' must be a non-empty string")

    unset = find_unset_env_refs(value)
    if unset:
        raise ValueError(f"Field '{field_name}' references unset environment variable '{unset[0]}'")

    expanded = ENV_REF_PATTERN.sub(lambda match: os.environ[match.group(1)], value)
    return Path(expanded).expanduser()
