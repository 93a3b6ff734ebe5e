# ABOUTME: Tests for batch apply with backups, rollback and snapshot refresh
import json
from pathlib import Path

import tomli

from mcporbit.apply import apply_changes, dry_run
from mcporbit.diff import DiffResult
from mcporbit.models import ApplyResult, Binding, ClientType, Server, ServerConfig, StdioTransport, new_id
from mcporbit.platforms.codex import CodexAdapter


class FailingCodexAdapter(CodexAdapter):
    """Compiles normally but never manages to write."""

    def apply(self, config, backup=False):
        return ApplyResult(success=False, file_path=config.file_path, error=OSError("disk full"))


def _registry(*clients: ClientType) -> tuple[list[Server], list[Binding]]:
    server = Server(id=new_id(), config=ServerConfig("git", StdioTransport(command="uvx", args=["mcp-server-git"])))
    bindings = [Binding(id=new_id(), server_id=server.id, client=client) for client in clients]
    return [server], bindings


def test_empty_diff_writes_nothing(adapters, client_paths) -> None:
    """Test nothing is touched when there is nothing to do."""
    servers, bindings = _registry(ClientType.CLAUDE_CODE)

    result = apply_changes(DiffResult(), servers, bindings, adapters)

    assert result.success
    assert result.files_changed == []
    assert not client_paths[ClientType.CLAUDE_CODE].exists()


def test_apply_writes_each_client(adapters, client_paths, backup_dir) -> None:
    """Test each client in the diff gets its compiled config."""
    servers, bindings = _registry(ClientType.CLAUDE_CODE, ClientType.CODEX)
    diff = DiffResult.full_sync([ClientType.CLAUDE_CODE, ClientType.CODEX])

    result = apply_changes(diff, servers, bindings, adapters, backup_dir=backup_dir)

    assert result.success
    assert result.files_changed == [client_paths[ClientType.CLAUDE_CODE], client_paths[ClientType.CODEX]]
    assert result.backups == []
    claude = json.loads(client_paths[ClientType.CLAUDE_CODE].read_text())
    assert claude["mcpServers"]["git"]["command"] == "uvx"
    codex = tomli.loads(client_paths[ClientType.CODEX].read_text())
    assert codex["mcp_servers"]["git"]["enabled"] is True


def test_apply_backs_up_existing_files(adapters, client_paths, backup_dir) -> None:
    """Test an existing file is backed up before being rewritten."""
    claude_path = client_paths[ClientType.CLAUDE_CODE]
    claude_path.parent.mkdir(parents=True, exist_ok=True)
    claude_path.write_text('{"theme": "dark"}')
    servers, bindings = _registry(ClientType.CLAUDE_CODE)

    result = apply_changes(DiffResult.full_sync([ClientType.CLAUDE_CODE]), servers, bindings, adapters,
                           backup_dir=backup_dir)

    assert result.success
    assert len(result.backups) == 1
    assert result.backups[0].file_path == claude_path
    assert result.backups[0].backup_path.read_text() == '{"theme": "dark"}'
    assert result.backups[0].backup_path.name.startswith("claude-code_")


def test_failed_client_rolls_back_whole_batch(adapters, client_paths, backup_dir) -> None:
    """Test one failing client restores every other file in the batch."""
    claude_path = client_paths[ClientType.CLAUDE_CODE]
    claude_path.parent.mkdir(parents=True, exist_ok=True)
    claude_path.write_text('{"mcpServers": {}}')
    gemini_path = client_paths[ClientType.GEMINI_CLI]

    failing = FailingCodexAdapter(config_path=client_paths[ClientType.CODEX])
    batch_adapters = [adapters[0], adapters[1], failing, adapters[3]]
    servers, bindings = _registry(ClientType.CLAUDE_CODE, ClientType.CODEX, ClientType.GEMINI_CLI)
    diff = DiffResult.full_sync([ClientType.CLAUDE_CODE, ClientType.CODEX, ClientType.GEMINI_CLI])

    result = apply_changes(diff, servers, bindings, batch_adapters, backup_dir=backup_dir)

    assert not result.success
    assert [(e.client, e.message) for e in result.errors] == [(ClientType.CODEX, "disk full")]
    assert result.files_changed == []
    assert claude_path.read_text() == '{"mcpServers": {}}'
    # Created during the failed batch, so removed again
    assert not gemini_path.exists()


def test_rollback_restores_exact_bytes(adapters, client_paths, backup_dir) -> None:
    """Test a rolled-back file keeps its CRLF line endings and non-UTF-8 bytes."""
    original = b'{\r\n  "theme": "dark",\r\n  "mcpServers": {}\r\n}\r\n'
    claude_path = client_paths[ClientType.CLAUDE_CODE]
    claude_path.parent.mkdir(parents=True, exist_ok=True)
    claude_path.write_bytes(original)
    gemini_path = client_paths[ClientType.GEMINI_CLI]
    gemini_path.parent.mkdir(parents=True, exist_ok=True)
    gemini_raw = b'{"theme": "caf\xe9"}\n'
    gemini_path.write_bytes(gemini_raw)

    failing = FailingCodexAdapter(config_path=client_paths[ClientType.CODEX])
    batch_adapters = [adapters[0], adapters[1], failing, adapters[3]]
    servers, bindings = _registry(ClientType.CLAUDE_CODE, ClientType.CODEX, ClientType.GEMINI_CLI)
    diff = DiffResult.full_sync([ClientType.CLAUDE_CODE, ClientType.CODEX, ClientType.GEMINI_CLI])

    result = apply_changes(diff, servers, bindings, batch_adapters, backup_dir=backup_dir)

    assert not result.success
    assert claude_path.read_bytes() == original
    assert gemini_path.read_bytes() == gemini_raw


def test_missing_adapter_is_error(client_paths) -> None:
    """Test a diff entry for a client without an adapter fails the batch."""
    servers, bindings = _registry(ClientType.OPENCODE)

    result = apply_changes(DiffResult.full_sync([ClientType.OPENCODE]), servers, bindings, [])

    assert not result.success
    assert result.errors[0].client == ClientType.OPENCODE


def test_snapshots_refreshed_after_success(store, adapters, client_paths, backup_dir) -> None:
    """Test written files are recorded so they don't show up as drift."""
    servers, bindings = _registry(ClientType.GEMINI_CLI)

    result = apply_changes(DiffResult.full_sync([ClientType.GEMINI_CLI]), servers, bindings, adapters,
                           store=store, backup_dir=backup_dir)

    assert result.success
    gemini_path = client_paths[ClientType.GEMINI_CLI]
    snapshot = store.get_snapshot(ClientType.GEMINI_CLI, gemini_path)
    assert snapshot is not None
    assert snapshot.hash == adapters[3].hash_mcp_block(gemini_path.read_text())


def test_snapshots_untouched_after_rollback(store, adapters, client_paths, backup_dir) -> None:
    """Test a rolled-back batch records no snapshots."""
    failing = FailingCodexAdapter(config_path=client_paths[ClientType.CODEX])
    servers, bindings = _registry(ClientType.CLAUDE_CODE, ClientType.CODEX)

    apply_changes(DiffResult.full_sync([ClientType.CLAUDE_CODE, ClientType.CODEX]), servers, bindings,
                  [adapters[0], failing], store=store, backup_dir=backup_dir)

    assert store.list_snapshots() == []


def test_backup_retention(adapters, client_paths, backup_dir) -> None:
    """Test only the newest backups per client are kept."""
    claude_path = client_paths[ClientType.CLAUDE_CODE]
    claude_path.parent.mkdir(parents=True, exist_ok=True)
    claude_path.write_text("{}")
    servers, bindings = _registry(ClientType.CLAUDE_CODE)

    for _ in range(4):
        apply_changes(DiffResult.full_sync([ClientType.CLAUDE_CODE]), servers, bindings, adapters,
                      backup_dir=backup_dir, backup_retention=2)

    assert len(list(backup_dir.glob("claude-code_*"))) == 2


def test_dry_run_does_not_write(adapters, client_paths) -> None:
    """Test previews show before/after without touching disk."""
    opencode_path = client_paths[ClientType.OPENCODE]
    opencode_path.parent.mkdir(parents=True, exist_ok=True)
    opencode_path.write_text('{"model": "x"}')
    servers, bindings = _registry(ClientType.OPENCODE, ClientType.GEMINI_CLI)

    previews = dry_run(
        DiffResult.full_sync([ClientType.OPENCODE, ClientType.GEMINI_CLI]), servers, bindings, adapters
    )

    assert [p.client for p in previews] == [ClientType.OPENCODE, ClientType.GEMINI_CLI]
    assert previews[0].before == '{"model": "x"}'
    assert json.loads(previews[0].after)["mcp"]["git"]["command"] == ["uvx", "mcp-server-git"]
    assert previews[1].before == ""
    assert all(p.changed for p in previews)
    assert opencode_path.read_text() == '{"model": "x"}'
    assert not client_paths[ClientType.GEMINI_CLI].exists()


def test_dry_run_unchanged_file(adapters, client_paths) -> None:
    """Test a file already in sync previews as unchanged."""
    servers, bindings = _registry(ClientType.CLAUDE_CODE)
    diff = DiffResult.full_sync([ClientType.CLAUDE_CODE])
    apply_changes(diff, servers, bindings, adapters)

    preview = dry_run(diff, servers, bindings, adapters)[0]
    assert not preview.changed
    assert isinstance(preview.file_path, Path)
