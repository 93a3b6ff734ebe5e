# ABOUTME: Utility modules for mcporbit
# ABOUTME: Exports settings path resolution, backup, JSONC editing, atomic writes and validation

from mcporbit.utils.backup import cleanup_old_backups, create_backup, get_backup_dir, restore_backup
from mcporbit.utils.env import find_unset_env_refs, resolve_settings_path
from mcporbit.utils.fileio import copy_file_atomic, read_text_or_none, write_text_atomic
from mcporbit.utils.validation import (
    ValidationError,
    parse_endpoint,
    validate_command_exists,
    validate_server_config,
    validate_url,
)

__all__ = [
    "find_unset_env_refs",
    "resolve_settings_path",
    "ValidationError",
    "parse_endpoint",
    "validate_command_exists",
    "validate_server_config",
    "validate_url",
    "create_backup",
    "restore_backup",
    "cleanup_old_backups",
    "get_backup_dir",
    "read_text_or_none",
    "write_text_atomic",
    "copy_file_atomic",
]
