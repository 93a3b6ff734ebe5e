# Client adapter shared utilities
import hashlib
import logging
import shutil
from pathlib import Path
from typing import Any, Callable

from mcporbit.fingerprint import canonical_json
from mcporbit.models import (
    ApplyResult,
    Binding,
    Candidate,
    ClientAdapter,
    ClientConfig,
    ClientType,
    DiscoverResult,
    InstallationStatus,
    Server,
    SourceSnapshot,
)
from mcporbit.utils.backup import create_backup
from mcporbit.utils.fileio import read_text_or_none, write_text_atomic

logger = logging.getLogger(__name__)

# ABOUTME: Header codex needs for streamable-HTTP servers when none is given
DEFAULT_HTTP_ACCEPT = "application/json, text/event-stream"


def sha256_text(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def hash_block(block: Any) -> str:
    """Stable hash of a parsed MCP block; a missing block hashes as {}."""
    return sha256_text(canonical_json(block or {}))


def discover_file(
    client: ClientType,
    path: Path,
    parse: Callable[[str], Any],
    normalize: Callable[[SourceSnapshot, Any], list[Candidate]],
    hasher: Callable[[str], str],
) -> DiscoverResult:
    """Read one config file and normalize it into candidates.

    ABOUTME: Missing file is a normal, empty result
    ABOUTME: Unreadable or unparseable file becomes a warning, never an exception
    ABOUTME: The snapshot is still recorded when parsing fails
    """
    result = DiscoverResult()

    try:
        content = path.read_text(encoding="utf-8")
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return result
    except (OSError, UnicodeDecodeError) as e:
        result.warnings.append(f"Failed to read config at {path}: {e}")
        return result

    snapshot = SourceSnapshot(client=client, path=path, hash=hasher(content), mtime=mtime)
    result.snapshots.append(snapshot)

    try:
        raw = parse(content)
        result.candidates.extend(normalize(snapshot, raw))
    except (ValueError, TypeError) as e:
        result.warnings.append(f"Failed to parse config at {path}: {e}")

    return result


def probe_installation(binary: str, config_path: Path) -> InstallationStatus:
    """Best-effort check for a client's binary and config file.

    ABOUTME: installed = binary on PATH or config file present
    """
    binary_path: str | None = None
    try:
        binary_path = shutil.which(binary)
    except OSError as e:
        logger.debug(f"Binary probe for {binary} failed: {e}")

    found_config: Path | None = None
    try:
        if config_path.exists():
            found_config = config_path
    except OSError as e:
        logger.debug(f"Config probe for {config_path} failed: {e}")

    return InstallationStatus(
        installed=bool(binary_path or found_config),
        config_path=found_config,
        binary_path=binary_path,
    )


def bound_servers(
    client: ClientType, servers: list[Server], bindings: list[Binding]
) -> list[tuple[Server, Binding]]:
    """Pair this client's bindings with their servers, in binding order.

    ABOUTME: Bindings for other clients or unknown servers are ignored
    """
    by_id = {server.id: server for server in servers}
    return [
        (by_id[binding.server_id], binding)
        for binding in bindings
        if binding.client == client and binding.server_id in by_id
    ]


def merge_write(
    adapter: ClientAdapter,
    config: ClientConfig,
    backup: bool = False,
    backup_dir: Path | None = None,
) -> ApplyResult:
    """Render compiled config into the existing file and write it atomically.

    ABOUTME: Shared apply() body for all adapters
    ABOUTME: Any failure is returned in the result, never raised
    """
    backup_path: Path | None = None
    try:
        existing = read_text_or_none(config.file_path)
        if backup and existing is not None:
            backup_path = create_backup(config.file_path, backup_dir, label=adapter.client.value)

        content = adapter.render(config, existing)
        write_text_atomic(config.file_path, content)
        logger.info(f"Wrote {adapter.client.value} config to {config.file_path}")
        return ApplyResult(success=True, file_path=config.file_path, backup_path=backup_path)
    except Exception as e:
        logger.warning(f"Failed to apply {adapter.client.value} config to {config.file_path}: {e}")
        return ApplyResult(
            success=False, file_path=config.file_path, backup_path=backup_path, error=e
        )


def optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def optional_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value]


def optional_map(value: Any) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    return {str(key): str(item) for key, item in value.items()}
