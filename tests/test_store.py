# ABOUTME: Tests for the SQLite registry store
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from mcporbit.conflicts import detect_conflicts
from mcporbit.models import (
    Binding,
    Candidate,
    ClientType,
    HttpTransport,
    Server,
    ServerConfig,
    SourceSnapshot,
    StdioTransport,
    new_id,
)
from mcporbit.store import Store


def _server(name: str = "fs", command: str = "npx", **kwargs) -> Server:
    return Server(id=new_id(), config=ServerConfig(name, StdioTransport(command=command, args=["-y"])), **kwargs)


def _binding(server: Server, client: ClientType = ClientType.CLAUDE_CODE, enabled: str = "on") -> Binding:
    return Binding(id=new_id(), server_id=server.id, client=client, enabled=enabled)


def _conflict():
    return detect_conflicts([
        Candidate(config=ServerConfig("x", StdioTransport(command="a")), client=ClientType.CLAUDE_CODE),
        Candidate(config=ServerConfig("x", StdioTransport(command="b")), client=ClientType.CODEX),
    ]).conflicts[0]


class TestStoreLifecycle:
    """Tests for opening and closing the store."""

    def test_init_creates_database_file(self, tmp_path: Path) -> None:
        """Test init creates parent directories and the file."""
        db_path = tmp_path / "deep" / "dir" / "registry.db"
        with Store.from_path(db_path) as store:
            assert store.list_servers() == []
        assert db_path.exists()

    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        """Test rows persist across store instances."""
        db_path = tmp_path / "registry.db"
        server = _server()
        with Store.from_path(db_path) as store:
            store.insert_server(server)
        with Store.from_path(db_path) as store:
            assert store.get_server(server.id).config == server.config

    def test_transaction_rolls_back_on_error(self, store: Store) -> None:
        """Test a failing transaction leaves nothing behind."""
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_server(_server("a"))
                raise RuntimeError("boom")

        assert store.list_servers() == []

    def test_nested_transactions_share_outer(self, store: Store) -> None:
        """Test inner calls join the outer transaction."""
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_server(_server("a"))
                with store.transaction():
                    store.insert_server(_server("b", command="b"))
                raise RuntimeError("boom")

        assert store.list_servers() == []


class TestServersAndBindings:
    """Tests for server and binding rows."""

    def test_insert_and_get_round_trip(self, store: Store) -> None:
        """Test every config field is persisted."""
        server = Server(
            id=new_id(),
            config=ServerConfig(
                "remote",
                HttpTransport(url="https://h/mcp", headers={"Authorization": "t"}),
                env={"K": "v"},
            ),
            tags=frozenset({"work", "docs"}),
        )
        store.insert_server(server)

        loaded = store.get_server(server.id)
        assert loaded.config == server.config
        assert loaded.tags == frozenset({"work", "docs"})
        assert loaded.fingerprint == server.fingerprint
        assert loaded.created_at.tzinfo is not None

    def test_get_missing_server(self, store: Store) -> None:
        assert store.get_server("nope") is None

    def test_unique_fingerprint_and_name(self, store: Store) -> None:
        """Test the same (fingerprint, name) can't be inserted twice."""
        store.insert_server(_server("fs"))
        with pytest.raises(IntegrityError):
            store.insert_server(_server("fs"))

    def test_same_fingerprint_different_name_allowed(self, store: Store) -> None:
        """Test renamed copies of one config can coexist."""
        store.insert_server(_server("fs-claude"))
        store.insert_server(_server("fs-codex"))
        assert len(store.list_servers()) == 2

    def test_find_by_fingerprint_and_name(self, store: Store) -> None:
        """Test lookups; name matching ignores case."""
        server = store.insert_server(_server("FileSystem"))

        assert store.find_server_by_fingerprint(server.fingerprint).id == server.id
        assert store.find_server_by_name("filesystem").id == server.id
        assert store.find_server_by_name("other") is None

    def test_binding_unique_per_client(self, store: Store) -> None:
        """Test one binding per (server, client)."""
        server = store.insert_server(_server())
        store.insert_binding(_binding(server))
        with pytest.raises(IntegrityError):
            store.insert_binding(_binding(server))

    def test_binding_requires_server(self, store: Store) -> None:
        """Test foreign keys are enforced."""
        orphan = Binding(id=new_id(), server_id="missing", client=ClientType.CODEX)
        with pytest.raises(IntegrityError):
            store.insert_binding(orphan)

    def test_delete_server_cascades(self, store: Store) -> None:
        """Test deleting a server removes its bindings."""
        server = store.insert_server(_server())
        store.insert_binding(_binding(server, ClientType.CLAUDE_CODE))
        store.insert_binding(_binding(server, ClientType.GEMINI_CLI))

        assert store.delete_server(server.id)
        assert store.list_bindings() == []
        assert not store.delete_server(server.id)

    def test_list_bindings_by_client(self, store: Store) -> None:
        server = store.insert_server(_server())
        store.insert_binding(_binding(server, ClientType.CLAUDE_CODE))
        store.insert_binding(_binding(server, ClientType.CODEX, enabled="off"))

        codex = store.list_bindings(ClientType.CODEX)
        assert [(b.client, b.enabled) for b in codex] == [(ClientType.CODEX, "off")]
        assert store.get_binding_for(server.id, ClientType.CODEX).id == codex[0].id
        assert store.get_binding_for(server.id, ClientType.OPENCODE) is None

    def test_list_servers_with_bindings(self, store: Store) -> None:
        bound = store.insert_server(_server("a", command="a"))
        store.insert_server(_server("b", command="b"))
        store.insert_binding(_binding(bound))

        result = {server.name: bindings for server, bindings in store.list_servers_with_bindings()}
        assert len(result["a"]) == 1
        assert result["b"] == []

    def test_update_server_recomputes_fingerprint(self, store: Store) -> None:
        """Test updates replace fields and the stored fingerprint."""
        server = store.insert_server(_server("a", command="old"))
        changed = Server(id=server.id, config=ServerConfig("a", StdioTransport(command="new")))

        updated = store.update_server(changed)

        assert updated.transport.command == "new"
        assert store.find_server_by_fingerprint(changed.fingerprint).id == server.id
        assert store.find_server_by_fingerprint(server.fingerprint) is None

    def test_update_missing_raises(self, store: Store) -> None:
        with pytest.raises(LookupError):
            store.update_server(_server())
        with pytest.raises(LookupError):
            store.update_binding_enabled("missing", "off")

    def test_update_binding_enabled(self, store: Store) -> None:
        server = store.insert_server(_server())
        binding = store.insert_binding(_binding(server))

        assert store.update_binding_enabled(binding.id, "off").enabled == "off"
        assert store.get_binding(binding.id).enabled == "off"

    def test_delete_orphaned_servers(self, store: Store) -> None:
        """Test only servers without bindings are removed."""
        kept = store.insert_server(_server("kept", command="a"))
        store.insert_binding(_binding(kept))
        orphan = store.insert_server(_server("orphan", command="b"))

        deleted = store.delete_orphaned_servers()

        assert [s.id for s in deleted] == [orphan.id]
        assert [s.name for s in store.list_servers()] == ["kept"]

    def test_clear_registry_keeps_resolved_conflicts(self, store: Store) -> None:
        """Test clearing wipes servers and open conflicts but keeps history."""
        server = store.insert_server(_server())
        store.insert_binding(_binding(server))
        store.upsert_snapshot(SourceSnapshot(ClientType.CODEX, Path("/c.toml"), "h", 1.0))
        resolved = _conflict()
        store.insert_pending_conflict(resolved)
        store.mark_conflict_resolved(resolved.id, {"type": "skip"})
        store.insert_pending_conflict(_conflict())

        store.clear_registry()

        assert store.list_servers() == []
        assert store.list_bindings() == []
        assert store.list_snapshots() == []
        assert store.unresolved_conflict_count() == 0
        assert store.clear_resolved_conflicts() == 1


class TestSnapshots:
    """Tests for source snapshot rows."""

    def test_upsert_keeps_id(self, store: Store) -> None:
        """Test a second upsert for the same file updates in place."""
        first = store.upsert_snapshot(SourceSnapshot(ClientType.CODEX, Path("/c.toml"), "h1", 1.0))
        second = store.upsert_snapshot(SourceSnapshot(ClientType.CODEX, Path("/c.toml"), "h2", 2.0))

        assert second.id == first.id
        assert second.hash == "h2"
        assert store.get_snapshot(ClientType.CODEX, Path("/c.toml")).mtime == 2.0
        assert len(store.list_snapshots()) == 1

    def test_same_path_different_clients(self, store: Store) -> None:
        store.upsert_snapshot(SourceSnapshot(ClientType.CODEX, Path("/same"), "h", 1.0))
        store.upsert_snapshot(SourceSnapshot(ClientType.GEMINI_CLI, Path("/same"), "h", 1.0))
        assert len(store.list_snapshots()) == 2


class TestActivityLog:
    """Tests for the activity log."""

    def test_recent_activities_newest_first(self, store: Store) -> None:
        store.log_activity("server_created", "server", "id1", "a")
        store.log_activity("server_deleted", "server", "id1", "a", {"reason": "test"})

        entries = store.recent_activities()
        assert [e.action for e in entries] == ["server_deleted", "server_created"]
        assert entries[0].details == {"reason": "test"}
        assert len(store.recent_activities(limit=1)) == 1

    def test_clear_old_activities(self, store: Store) -> None:
        """Test retention keeps recent entries and drops expired ones."""
        store.log_activity("scan_completed", "scan")

        assert store.clear_old_activities() == 0
        assert store.clear_old_activities(older_than=timedelta(seconds=-1)) == 1
        assert store.recent_activities() == []


class TestPendingConflicts:
    """Tests for persisted conflicts."""

    def test_insert_and_list(self, store: Store) -> None:
        conflict = _conflict()
        store.insert_pending_conflict(conflict)

        pending = store.pending_conflicts()
        assert len(pending) == 1
        assert pending[0].id == conflict.id
        assert pending[0].sources == conflict.sources
        assert pending[0].differences == conflict.differences
        assert store.unresolved_conflict_count() == 1

    def test_mark_resolved(self, store: Store) -> None:
        conflict = _conflict()
        store.insert_pending_conflict(conflict)

        assert store.mark_conflict_resolved(conflict.id, {"type": "skip"})
        assert store.pending_conflicts() == []
        assert not store.mark_conflict_resolved("missing", {"type": "skip"})

    def test_clear_pending_conflicts(self, store: Store) -> None:
        store.insert_pending_conflict(_conflict())
        store.clear_pending_conflicts()
        assert store.unresolved_conflict_count() == 0
