# ABOUTME: Backup utilities for client configuration files.
# ABOUTME: Handles timestamped backups with automatic retention cleanup (keep last N per client).
import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path

from mcporbit.utils.fileio import copy_file_atomic

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 5

# Pattern matches: {label}_{YYYYMMDD}_{HHMMSS}_{ffffff}[.ext]
BACKUP_PATTERN = re.compile(r"^(.+?)_(\d{8}_\d{6}_\d{6})(\..+)?$")


def create_backup(
    source_path: Path,
    backup_dir: Path | None = None,
    label: str | None = None,
    keep: int = DEFAULT_RETENTION,
) -> Path:
    """Create a timestamped backup of a file.

    ABOUTME: Backup format: {label}_{YYYYMMDD}_{HHMMSS}_{micros}{ext}
    ABOUTME: Uses shutil.copy2() to preserve file metadata
    ABOUTME: Creates backup_dir if it doesn't exist

    Args:
        source_path: Path to file to backup
        backup_dir: Directory where backup should be created (default ~/.mcporbit/backups)
        label: Name prefix, normally the client id; derived from the filename if omitted
        keep: Backups to retain per label

    Returns:
        Path to created backup file

    Raises:
        FileNotFoundError: If source_path doesn't exist
        OSError: If backup creation fails

    Examples:
        >>> backup_path = create_backup(Path("~/.claude.json").expanduser(), label="claude-code")
        >>> backup_path.name
        'claude-code_20260108_143022_123456.json'
    """
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {source_path}")

    if backup_dir is None:
        backup_dir = get_backup_dir()
    backup_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

    # e.g., ~/.claude.json -> claude, settings.json -> settings
    if not label:
        label = source_path.name.lstrip(".").replace(".", "_").split("_")[0] or "config"

    backup_path = backup_dir / f"{label}_{timestamp}{source_path.suffix}"
    shutil.copy2(source_path, backup_path)
    logger.debug(f"Backed up {source_path} to {backup_path}")

    cleanup_old_backups(backup_dir, keep)

    return backup_path


def restore_backup(backup_path: Path, original_path: Path) -> None:
    """Put a backup back in place of the original file.

    ABOUTME: Copies bytes through a temp file and rename; a failed restore leaves no partial file

    Raises:
        FileNotFoundError: If backup_path doesn't exist
    """
    if not backup_path.exists():
        raise FileNotFoundError(f"Backup file not found: {backup_path}")

    copy_file_atomic(backup_path, original_path)
    logger.debug(f"Restored {original_path} from {backup_path}")


def get_backup_dir() -> Path:
    """Get the default backup directory path.

    ABOUTME: Returns $MCPORBIT_HOME/backups or ~/.mcporbit/backups
    ABOUTME: Does not create the directory
    """
    home = os.environ.get("MCPORBIT_HOME")
    base = Path(home) if home else Path.home() / ".mcporbit"
    return base / "backups"


def cleanup_old_backups(backup_dir: Path, max_backups_per_label: int = DEFAULT_RETENTION) -> list[Path]:
    """Remove old backup files, keeping only the most recent per label.

    ABOUTME: Groups backups by label prefix (before _timestamp)
    ABOUTME: Logs warnings on errors but does not raise exceptions

    Returns:
        List of paths that were deleted
    """
    deleted_files: list[Path] = []

    if not backup_dir.exists():
        return deleted_files

    backups_by_label: dict[str, list[tuple[str, Path]]] = {}

    for file_path in backup_dir.iterdir():
        if not file_path.is_file():
            continue

        match = BACKUP_PATTERN.match(file_path.name)
        if not match:
            continue

        backups_by_label.setdefault(match.group(1), []).append((match.group(2), file_path))

    for backups in backups_by_label.values():
        # Newest first
        backups.sort(key=lambda x: x[0], reverse=True)

        for _timestamp, file_path in backups[max_backups_per_label:]:
            try:
                file_path.unlink()
                deleted_files.append(file_path)
                logger.debug(f"Deleted old backup: {file_path}")
            except OSError as e:
                logger.warning(f"Failed to delete old backup {file_path}: {e}")

    return deleted_files
