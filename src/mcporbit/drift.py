# ABOUTME: Detect client config files whose MCP block changed outside mcporbit
# ABOUTME: Compares the stored snapshot hash with a fresh hash of the file on disk
import logging
from dataclasses import dataclass
from pathlib import Path

from mcporbit.events import DriftEvent, EventBus
from mcporbit.models import ClientAdapter, SourceSnapshot, utcnow
from mcporbit.store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftReport:
    snapshot: SourceSnapshot
    current_hash: str | None

    @property
    def missing(self) -> bool:
        return self.current_hash is None


def refresh_snapshot(store: Store, adapter: ClientAdapter, path: Path) -> SourceSnapshot | None:
    """Record the hash of content mcporbit just wrote, so it isn't reported as drift.

    ABOUTME: Non-critical: failures are logged and None is returned
    """
    try:
        content = path.read_text(encoding="utf-8")
        snapshot = SourceSnapshot(
            client=adapter.client,
            path=path,
            hash=adapter.hash_mcp_block(content),
            mtime=path.stat().st_mtime,
        )
        return store.upsert_snapshot(snapshot)
    except Exception as e:
        logger.warning(f"Failed to update snapshot hash for {path}: {e}")
        return None


def check_drift(
    store: Store,
    adapters: list[ClientAdapter],
    bus: EventBus | None = None,
) -> list[DriftReport]:
    """Re-hash every snapshotted file and report the ones that changed.

    ABOUTME: A deleted file counts as drift
    ABOUTME: Each drift emits a DriftEvent and logs drift_detected
    """
    by_client = {adapter.client: adapter for adapter in adapters}
    reports: list[DriftReport] = []

    for snapshot in store.list_snapshots():
        adapter = by_client.get(snapshot.client)
        if adapter is None:
            continue

        try:
            content: str | None = snapshot.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {snapshot.path} for drift check: {e}")
            continue

        current_hash = adapter.hash_mcp_block(content) if content is not None else None
        if current_hash == snapshot.hash:
            continue

        report = DriftReport(snapshot=snapshot, current_hash=current_hash)
        reports.append(report)
        logger.info(f"Drift detected in {snapshot.client.value} config {snapshot.path}")

        store.log_activity(
            "drift_detected",
            "drift",
            entity_id=snapshot.id,
            entity_name=str(snapshot.path),
            details={"client": snapshot.client.value, "missing": report.missing},
        )
        if bus is not None:
            bus.emit(DriftEvent(
                snapshot_id=snapshot.id,
                file_path=snapshot.path,
                client=snapshot.client,
                detected_at=utcnow(),
            ))

    return reports


def accept_drift(store: Store, adapter: ClientAdapter, path: Path) -> SourceSnapshot | None:
    """Take the file's current MCP block as the new baseline."""
    snapshot = refresh_snapshot(store, adapter, path)
    if snapshot is not None:
        store.log_activity(
            "drift_resolved",
            "drift",
            entity_id=snapshot.id,
            entity_name=str(path),
            details={"client": adapter.client.value},
        )
    return snapshot
