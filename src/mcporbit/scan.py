# ABOUTME: Global scan across every client adapter
# ABOUTME: Collects candidates and records a source snapshot per config file
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from mcporbit.models import Candidate, ClientAdapter, ClientType, SourceSnapshot
from mcporbit.store import Store
from mcporbit.utils.fileio import read_text_or_none

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    candidates: list[Candidate] = field(default_factory=list)
    snapshots: list[SourceSnapshot] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def global_scan(
    store: Store,
    adapters: list[ClientAdapter],
    config_paths: dict[ClientType, Path] | None = None,
) -> ScanResult:
    """Discover every adapter's config, in registry order.

    ABOUTME: One adapter failing becomes a warning; the rest still run
    ABOUTME: Snapshots are re-hashed from disk and upserted by (client, path)
    """
    config_paths = config_paths or {}
    result = ScanResult()

    for adapter in adapters:
        try:
            discovered = adapter.discover(config_paths.get(adapter.client))
        except Exception as e:
            result.warnings.append(f"Adapter {adapter.client.value} failed: {e}")
            continue

        result.warnings.extend(discovered.warnings)

        stored: dict[str, SourceSnapshot] = {}
        for snapshot in discovered.snapshots:
            content = read_text_or_none(snapshot.path)
            if content is not None:
                snapshot = replace(snapshot, hash=adapter.hash_mcp_block(content))
            saved = store.upsert_snapshot(snapshot)
            stored[snapshot.id] = saved
            result.snapshots.append(saved)

        for candidate in discovered.candidates:
            if candidate.snapshot is not None and candidate.snapshot.id in stored:
                candidate.snapshot = stored[candidate.snapshot.id]
            result.candidates.append(candidate)

    logger.info(
        f"Scanned {len(adapters)} clients: {len(result.candidates)} candidates, "
        f"{len(result.warnings)} warnings"
    )
    return result
