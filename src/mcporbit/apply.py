# ABOUTME: Write the registry out to client config files as one batch
# ABOUTME: Any failed client rolls every file in the batch back from its backup
import logging
from dataclasses import dataclass, field
from pathlib import Path

from mcporbit.diff import DiffResult
from mcporbit.drift import refresh_snapshot
from mcporbit.models import Binding, ClientAdapter, ClientType, Server
from mcporbit.store import Store
from mcporbit.utils.backup import DEFAULT_RETENTION, create_backup, restore_backup
from mcporbit.utils.fileio import read_text_or_none

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyError:
    client: ClientType
    file_path: Path | None
    message: str


@dataclass(frozen=True)
class BackupRecord:
    file_path: Path
    backup_path: Path


@dataclass
class OrchestratorResult:
    success: bool
    files_changed: list[Path] = field(default_factory=list)
    errors: list[ApplyError] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)


@dataclass(frozen=True)
class FilePreview:
    client: ClientType
    file_path: Path
    before: str
    after: str

    @property
    def changed(self) -> bool:
        return self.before != self.after


def _rollback(backups: list[BackupRecord], created: list[Path]) -> None:
    for record in backups:
        try:
            restore_backup(record.backup_path, record.file_path)
            logger.info(f"Restored {record.file_path} from {record.backup_path}")
        except OSError as e:
            logger.error(f"Failed to restore {record.file_path} from {record.backup_path}: {e}")
    for path in created:
        try:
            path.unlink(missing_ok=True)
            logger.info(f"Removed {path}, which did not exist before this apply")
        except OSError as e:
            logger.error(f"Failed to remove {path}: {e}")


def apply_changes(
    diff: DiffResult,
    servers: list[Server],
    bindings: list[Binding],
    adapters: list[ClientAdapter],
    store: Store | None = None,
    backup_dir: Path | None = None,
    backup_retention: int = DEFAULT_RETENTION,
) -> OrchestratorResult:
    """Compile and write every client named in the diff.

    Each client is compiled from the whole registry state, so the file
    always ends up matching it. Existing files are backed up first and
    the adapter is told not to take a second backup. If any client fails,
    every file touched in the batch is put back as it was. Snapshot
    hashes are refreshed only once the whole batch has landed.

    Never raises for per-client failures; they are returned in errors.
    """
    result = OrchestratorResult(success=True)
    if diff.is_empty():
        return result

    by_client = {adapter.client: adapter for adapter in adapters}
    created: list[Path] = []
    written: list[tuple[ClientAdapter, Path]] = []

    for entry in diff.entries:
        adapter = by_client.get(entry.client)
        if adapter is None:
            result.errors.append(ApplyError(entry.client, None, f"No adapter for client {entry.client.value}"))
            continue

        try:
            config = adapter.compile(servers, bindings)
        except Exception as e:
            logger.warning(f"Failed to compile {entry.client.value} config: {e}")
            result.errors.append(ApplyError(entry.client, None, f"Compile failed: {e}"))
            continue

        backup: BackupRecord | None = None
        existed = config.file_path.exists()
        if existed:
            try:
                backup_path = create_backup(
                    config.file_path, backup_dir, label=entry.client.value, keep=backup_retention
                )
            except OSError as e:
                logger.warning(f"Failed to back up {config.file_path}: {e}")
                result.errors.append(ApplyError(entry.client, config.file_path, f"Backup failed: {e}"))
                continue
            backup = BackupRecord(config.file_path, backup_path)
            result.backups.append(backup)

        applied = adapter.apply(config, backup=False)
        if not applied.success:
            if backup is not None:
                try:
                    restore_backup(backup.backup_path, backup.file_path)
                except OSError as e:
                    logger.error(f"Failed to restore {backup.file_path}: {e}")
            message = str(applied.error) if applied.error else "Apply failed"
            result.errors.append(ApplyError(entry.client, config.file_path, message))
            continue

        result.files_changed.append(config.file_path)
        written.append((adapter, config.file_path))
        if not existed:
            created.append(config.file_path)

    if result.errors:
        result.success = False
        logger.warning(f"Apply failed for {len(result.errors)} client(s); rolling back batch")
        _rollback(result.backups, created)
        result.files_changed = []
        return result

    if store is not None:
        for adapter, path in written:
            refresh_snapshot(store, adapter, path)

    return result


def dry_run(
    diff: DiffResult,
    servers: list[Server],
    bindings: list[Binding],
    adapters: list[ClientAdapter],
) -> list[FilePreview]:
    """Show what apply_changes would write, without touching disk."""
    by_client = {adapter.client: adapter for adapter in adapters}
    previews: list[FilePreview] = []

    for entry in diff.entries:
        adapter = by_client.get(entry.client)
        if adapter is None:
            continue
        config = adapter.compile(servers, bindings)
        existing = read_text_or_none(config.file_path)
        previews.append(FilePreview(
            client=entry.client,
            file_path=config.file_path,
            before=existing or "",
            after=adapter.render(config, existing),
        ))

    return previews
