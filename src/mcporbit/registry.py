# ABOUTME: User-facing registry operations: edit servers and bindings, resolve conflicts
# ABOUTME: Every mutation is stored, logged, then pushed to the affected client files
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

from mcporbit.apply import FilePreview, OrchestratorResult, apply_changes, dry_run
from mcporbit.conflicts import (
    BulkAction,
    ConflictGroup,
    ConflictResolution,
    create_bulk_resolution,
)
from mcporbit.diff import DiffResult, calculate_diff
from mcporbit.events import ErrorEvent, EventBus, InfoEvent
from mcporbit.models import (
    Binding,
    ClientAdapter,
    ClientType,
    InstallationStatus,
    Server,
    ServerConfig,
    new_id,
    utcnow,
)
from mcporbit.rebuild import RebuildResult, rebuild_registry
from mcporbit.store import ActivityEntry, Store
from mcporbit.utils.backup import DEFAULT_RETENTION
from mcporbit.utils.validation import ValidationError, parse_endpoint, validate_server_config

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """Outcome of a registry edit and the file writes it triggered."""
    apply: OrchestratorResult
    server: Server | None = None
    binding: Binding | None = None
    warnings: list[ValidationError] = field(default_factory=list)


@dataclass
class ResolveResult:
    resolved_count: int
    rebuild: RebuildResult | None = None
    apply: OrchestratorResult | None = None


def _check_config(config: ServerConfig) -> list[ValidationError]:
    """Raise on the first blocking error; return the warnings."""
    problems = validate_server_config(config)
    for problem in problems:
        if problem.severity == "error":
            raise ValueError(problem.message)
    return problems


class RegistryService:
    """Registry mutations with write-through to client config files.

    ABOUTME: Validation problems raise ValueError before anything is stored
    ABOUTME: Unknown server or binding ids raise LookupError
    ABOUTME: File write failures come back in the OrchestratorResult
    """

    def __init__(
        self,
        store: Store,
        adapters: list[ClientAdapter],
        bus: EventBus | None = None,
        backup_dir: Path | None = None,
        backup_retention: int = DEFAULT_RETENTION,
        config_paths: dict[ClientType, Path] | None = None,
    ) -> None:
        self.store = store
        self.adapters = adapters
        self.bus = bus or EventBus()
        self.backup_dir = backup_dir
        self.backup_retention = backup_retention
        self.config_paths = config_paths or {}

    # Queries

    def list_servers(self) -> list[tuple[Server, list[Binding]]]:
        return self.store.list_servers_with_bindings()

    def get_server(self, server_id: str) -> tuple[Server, list[Binding]]:
        server = self.store.get_server(server_id)
        if server is None:
            raise LookupError(f"Server not found: {server_id}")
        bindings = [b for b in self.store.list_bindings() if b.server_id == server_id]
        return server, bindings

    def effective_config(self, client: ClientType) -> list[tuple[Server, Binding]]:
        """Servers a client actually runs: bound and enabled."""
        result: list[tuple[Server, Binding]] = []
        for server, bindings in self.list_servers():
            binding = next((b for b in bindings if b.client == client and b.enabled == "on"), None)
            if binding is not None:
                result.append((server, binding))
        return result

    def pending_conflicts(self) -> list[ConflictGroup]:
        return self.store.pending_conflicts()

    def recent_activity(self, limit: int = 20) -> list[ActivityEntry]:
        return self.store.recent_activities(limit)

    def list_installed_clients(self) -> list[tuple[ClientAdapter, InstallationStatus]]:
        """Probe every adapter concurrently, in registry order.

        ABOUTME: A probe that raises is reported as not installed
        """
        def probe(adapter: ClientAdapter) -> InstallationStatus:
            try:
                return adapter.is_installed()
            except Exception as e:
                logger.warning(f"Installation probe for {adapter.client.value} failed: {e}")
                return InstallationStatus(installed=False)

        with ThreadPoolExecutor(max_workers=max(len(self.adapters), 1)) as pool:
            statuses = list(pool.map(probe, self.adapters))
        return list(zip(self.adapters, statuses))

    # Writing out

    def _state(self) -> tuple[list[Server], list[Binding]]:
        pairs = self.store.list_servers_with_bindings()
        return [server for server, _ in pairs], [b for _, bindings in pairs for b in bindings]

    def _apply(self, diff: DiffResult) -> OrchestratorResult:
        servers, bindings = self._state()
        result = apply_changes(
            diff,
            servers,
            bindings,
            self.adapters,
            store=self.store,
            backup_dir=self.backup_dir,
            backup_retention=self.backup_retention,
        )
        if not result.success:
            for error in result.errors:
                self.bus.emit(ErrorEvent(f"{error.client.value}: {error.message}"))
        elif result.files_changed:
            self.bus.emit(InfoEvent(f"Updated {len(result.files_changed)} client config file(s)"))
        return result

    def _known_clients(self) -> list[ClientType]:
        """Clients with bindings or a recorded config file, in registry order."""
        seen = {b.client for b in self.store.list_bindings()}
        seen.update(snapshot.client for snapshot in self.store.list_snapshots())
        return [adapter.client for adapter in self.adapters if adapter.client in seen]

    def apply_all(self) -> OrchestratorResult:
        return self._apply(DiffResult.full_sync(self._known_clients()))

    def preview_all(self) -> list[FilePreview]:
        servers, bindings = self._state()
        return dry_run(DiffResult.full_sync(self._known_clients()), servers, bindings, self.adapters)

    # Servers

    def create_server(
        self,
        name: str,
        transport: str,
        endpoint: str | dict[str, Any],
        tags: list[str] | None = None,
        clients: list[ClientType] | None = None,
    ) -> MutationResult:
        """Add a server and bind it (enabled) to the given clients.

        Raises:
            ValueError: Invalid input, or a server with the same name
                (case-insensitive) or the same configuration exists
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Field 'name' is required")
        if self.store.find_server_by_name(name) is not None:
            raise ValueError(f"A server named '{name}' already exists")

        config = parse_endpoint(name, transport, endpoint)
        warnings = _check_config(config)

        existing = self.store.find_server_by_fingerprint(config.fingerprint)
        if existing is not None:
            raise ValueError(f"A server with this configuration already exists: '{existing.name}'")

        now = utcnow()
        server = Server(
            id=new_id(),
            config=config,
            tags=frozenset(tags) if tags else None,
            created_at=now,
            updated_at=now,
        )
        targets = list(dict.fromkeys(clients or []))

        with self.store.transaction():
            self.store.insert_server(server)
            self.store.log_activity(
                "server_created", "server", server.id, server.name, {"transport": server.type}
            )
            for client in targets:
                binding = self.store.insert_binding(
                    Binding(id=new_id(), server_id=server.id, client=client, created_at=now, updated_at=now)
                )
                self.store.log_activity(
                    "binding_created", "binding", binding.id, server.name, {"client": client.value}
                )

        logger.info(f"Created server '{server.name}' bound to {[c.value for c in targets]}")
        return MutationResult(apply=self._apply(DiffResult.full_sync(targets)), server=server, warnings=warnings)

    def update_server(
        self,
        server_id: str,
        name: str | None = None,
        transport: str | None = None,
        endpoint: str | dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> MutationResult:
        """Edit a server; every client it is bound to is rewritten.

        Raises:
            LookupError: If the server doesn't exist
            ValueError: Invalid input or a clash with another server
        """
        server, bindings = self.get_server(server_id)

        new_name = name.strip() if name is not None else server.name
        if not new_name:
            raise ValueError("Field 'name' is required")
        if new_name.lower() != server.name.lower():
            clash = self.store.find_server_by_name(new_name)
            if clash is not None and clash.id != server.id:
                raise ValueError(f"A server named '{new_name}' already exists")

        if endpoint is not None:
            config = parse_endpoint(new_name, transport or server.type, endpoint)
        else:
            if transport is not None and transport != server.type:
                raise ValueError("Field 'endpoint' is required when changing transport")
            config = server.config.with_name(new_name)
        warnings = _check_config(config)

        clash = self.store.find_server_by_fingerprint(config.fingerprint)
        if clash is not None and clash.id != server.id and clash.name == new_name:
            raise ValueError(f"A server with this configuration already exists: '{clash.name}'")

        updated = replace(
            server,
            config=config,
            tags=frozenset(tags) if tags is not None else server.tags,
        )
        with self.store.transaction():
            updated = self.store.update_server(updated)
            self.store.log_activity("server_updated", "server", server.id, updated.name)

        clients = [b.client for b in bindings]
        return MutationResult(apply=self._apply(DiffResult.full_sync(clients)), server=updated, warnings=warnings)

    def delete_server(self, server_id: str) -> MutationResult:
        """Delete a server and its bindings, then rewrite the clients it was in.

        Raises:
            LookupError: If the server doesn't exist
        """
        server, bindings = self.get_server(server_id)
        with self.store.transaction():
            self.store.delete_server(server_id)
            self.store.log_activity("server_deleted", "server", server.id, server.name)

        clients = [b.client for b in bindings]
        return MutationResult(apply=self._apply(DiffResult.full_sync(clients)), server=server)

    def cleanup_orphans(self) -> list[Server]:
        """Delete servers no client binds; no files change."""
        deleted = self.store.delete_orphaned_servers()
        self.store.log_activity(
            "cleanup", "server", details={"orphans_deleted": len(deleted), "names": [s.name for s in deleted]}
        )
        logger.info(f"Removed {len(deleted)} orphaned server(s)")
        return deleted

    # Bindings

    def set_binding_enabled(self, binding_id: str, enabled: str) -> MutationResult:
        """Turn a binding on or off ('inherit' means on).

        Raises:
            LookupError: If the binding doesn't exist
            ValueError: If enabled isn't on/off/inherit
        """
        if enabled == "inherit":
            enabled = "on"
        if enabled not in ("on", "off"):
            raise ValueError(f"Field 'enabled' has invalid value '{enabled}'. Must be 'on' or 'off'.")

        binding = self.store.get_binding(binding_id)
        if binding is None:
            raise LookupError(f"Binding not found: {binding_id}")

        before = self.store.list_bindings()
        with self.store.transaction():
            updated = self.store.update_binding_enabled(binding_id, enabled)
            if binding.enabled != enabled:
                server = self.store.get_server(binding.server_id)
                self.store.log_activity(
                    "binding_enabled" if enabled == "on" else "binding_disabled",
                    "binding",
                    binding_id,
                    server.name if server else None,
                    {"client": binding.client.value},
                )

        diff = calculate_diff(before, self.store.list_bindings())
        return MutationResult(apply=self._apply(diff), binding=updated)

    def add_binding(self, server_id: str, client: ClientType, enabled: str = "on") -> MutationResult:
        """Bind a server to a client; an existing binding just gets the new flag.

        Raises:
            LookupError: If the server doesn't exist
        """
        server, _ = self.get_server(server_id)
        existing = self.store.get_binding_for(server_id, client)
        if existing is not None:
            result = self.set_binding_enabled(existing.id, enabled)
            result.server = server
            return result

        if enabled not in ("on", "off"):
            raise ValueError(f"Field 'enabled' has invalid value '{enabled}'. Must be 'on' or 'off'.")

        before = self.store.list_bindings()
        with self.store.transaction():
            binding = self.store.insert_binding(
                Binding(id=new_id(), server_id=server_id, client=client, enabled=enabled)
            )
            self.store.log_activity(
                "binding_created", "binding", binding.id, server.name, {"client": client.value}
            )

        diff = calculate_diff(before, self.store.list_bindings())
        return MutationResult(apply=self._apply(diff), server=server, binding=binding)

    def remove_binding(self, binding_id: str) -> MutationResult:
        """Unbind a server from a client and rewrite that client's file.

        Raises:
            LookupError: If the binding doesn't exist
        """
        binding = self.store.get_binding(binding_id)
        if binding is None:
            raise LookupError(f"Binding not found: {binding_id}")
        server = self.store.get_server(binding.server_id)

        before = self.store.list_bindings()
        with self.store.transaction():
            self.store.delete_binding(binding_id)
            self.store.log_activity(
                "binding_deleted",
                "binding",
                binding_id,
                server.name if server else None,
                {"client": binding.client.value},
            )

        diff = calculate_diff(before, self.store.list_bindings())
        return MutationResult(apply=self._apply(diff), server=server, binding=binding)

    # Scanning and conflicts

    def rescan(self, force_import_all: bool = False) -> RebuildResult:
        return rebuild_registry(
            self.store,
            self.adapters,
            force_import_all=force_import_all,
            config_paths=self.config_paths,
            bus=self.bus,
        )

    def resolve_conflicts(self, resolutions: list[ConflictResolution]) -> ResolveResult:
        """Record resolutions, rebuild with them, then write every client.

        Resolutions are matched to pending conflicts by id, then by name.
        The rebuild re-detects conflicts under new ids, so each matched
        resolution carries its conflict's name into it.
        """
        if not resolutions:
            return ResolveResult(resolved_count=0)

        # Marking and rebuilding commit together or not at all
        with self.store.transaction():
            pending = self.store.pending_conflicts()
            by_id = {c.id: c for c in pending}
            by_name = {c.name: c for c in pending}
            resolved_count = 0
            named: list[ConflictResolution] = []
            for resolution in resolutions:
                conflict = by_id.get(resolution.conflict_id) or by_name.get(resolution.conflict_name or "")
                if conflict is None:
                    logger.warning(f"No pending conflict matches resolution {resolution.conflict_id}")
                    named.append(resolution)
                    continue
                if resolution.conflict_name is None:
                    resolution = replace(resolution, conflict_name=conflict.name)
                named.append(resolution)
                if self.store.mark_conflict_resolved(conflict.id, resolution.action.to_dict()):
                    resolved_count += 1

            rebuild = rebuild_registry(
                self.store,
                self.adapters,
                resolutions=named,
                config_paths=self.config_paths,
                bus=self.bus,
            )
        return ResolveResult(resolved_count=resolved_count, rebuild=rebuild, apply=self.apply_all())

    def bulk_resolve(self, action: BulkAction, client: ClientType | None = None) -> ResolveResult:
        conflicts = self.store.pending_conflicts()
        if not conflicts:
            return ResolveResult(resolved_count=0)
        return self.resolve_conflicts(create_bulk_resolution(conflicts, action, client))

    def prune_activity(self, older_than_days: int) -> int:
        removed = self.store.clear_old_activities(timedelta(days=older_than_days))
        logger.info(f"Pruned {removed} activity entries older than {older_than_days} days")
        return removed
