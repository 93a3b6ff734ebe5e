# ABOUTME: Rebuild the registry from whatever the clients' config files say now
# ABOUTME: Runs as one store transaction: clear, scan, detect, resolve, dedup, insert
import logging
from dataclasses import dataclass, field
from pathlib import Path

from mcporbit.conflicts import ConflictGroup, ConflictResolution, apply_resolutions, detect_conflicts
from mcporbit.dedup import deduplicate
from mcporbit.events import EventBus, InfoEvent
from mcporbit.models import ClientAdapter, ClientType
from mcporbit.scan import global_scan
from mcporbit.store import Store

logger = logging.getLogger(__name__)


@dataclass
class RebuildResult:
    success: bool
    imported_count: int = 0
    conflicts: list[ConflictGroup] = field(default_factory=list)
    skipped_due_to_conflicts: int = 0
    warnings: list[str] = field(default_factory=list)


def rebuild_registry(
    store: Store,
    adapters: list[ClientAdapter],
    resolutions: list[ConflictResolution] | None = None,
    force_import_all: bool = False,
    config_paths: dict[ClientType, Path] | None = None,
    bus: EventBus | None = None,
) -> RebuildResult:
    """Replace the registry with a fresh import of all client configs.

    Unresolved conflicts are stored as pending and their servers are left
    out. With force_import_all every raw candidate is imported instead and
    nothing is left pending. Resolutions take precedence over
    force_import_all.

    Any exception rolls the whole rebuild back and propagates.
    """
    with store.transaction():
        store.clear_registry()

        scan = global_scan(store, adapters, config_paths)
        detection = detect_conflicts(scan.candidates)

        candidates = detection.non_conflicting
        unresolved = detection.conflicts
        if resolutions:
            candidates = apply_resolutions(detection.conflicts, resolutions, detection.non_conflicting)
            resolved_ids = {r.conflict_id for r in resolutions}
            resolved_names = {r.conflict_name for r in resolutions if r.conflict_name}
            unresolved = [
                c for c in detection.conflicts
                if c.id not in resolved_ids and c.name not in resolved_names
            ]
        elif force_import_all:
            candidates = scan.candidates
            unresolved = []

        for conflict in unresolved:
            store.insert_pending_conflict(conflict)

        deduped = deduplicate(candidates)
        deduped.sort(key=lambda item: (item.server.fingerprint, item.server.name))

        for item in deduped:
            store.insert_server(item.server)
            for binding in item.bindings:
                store.insert_binding(binding)

        store.log_activity(
            "scan_completed",
            "scan",
            details={
                "imported": len(deduped),
                "conflicts": len(unresolved),
                "warnings": len(scan.warnings),
            },
        )

    for warning in scan.warnings:
        logger.warning(warning)
    logger.info(f"Rebuilt registry: {len(deduped)} servers, {len(unresolved)} unresolved conflicts")
    if bus is not None:
        bus.emit(InfoEvent(
            f"Registry rebuilt: {len(deduped)} servers imported, {len(unresolved)} conflicts pending"
        ))

    return RebuildResult(
        success=True,
        imported_count=len(deduped),
        conflicts=unresolved,
        skipped_due_to_conflicts=len(unresolved),
        warnings=scan.warnings,
    )
