# ABOUTME: Tests for backup utilities.
# ABOUTME: Covers create_backup, restore_backup, get_backup_dir, and cleanup_old_backups functions.
import re
from pathlib import Path

import pytest

from mcporbit.utils.backup import cleanup_old_backups, create_backup, get_backup_dir, restore_backup


class TestGetBackupDir:
    """Tests for get_backup_dir function."""

    def test_honours_mcporbit_home(self, tmp_path):
        """Test that MCPORBIT_HOME moves the backup dir."""
        assert get_backup_dir() == tmp_path / "mcporbit-home" / "backups"

    def test_default_location(self, monkeypatch):
        """Test that backup dir is ~/.mcporbit/backups without MCPORBIT_HOME."""
        monkeypatch.delenv("MCPORBIT_HOME")
        backup_dir = get_backup_dir()
        assert backup_dir.parent.name == ".mcporbit"
        assert backup_dir.name == "backups"
        assert backup_dir.is_absolute()


class TestCreateBackup:
    """Tests for create_backup function."""

    def test_backup_preserves_content(self, tmp_path):
        """Test that backup preserves file content."""
        source = tmp_path / "config.json"
        original_content = '{"mcpServers": {"test": {"command": "node"}}}'
        source.write_text(original_content)

        backup_path = create_backup(source, tmp_path / "backups")

        assert backup_path.exists()
        assert backup_path.read_text() == original_content

    def test_backup_filename_format(self, tmp_path):
        """Test that backup filename follows format: {label}_{YYYYMMDD}_{HHMMSS}_{micros}.{ext}"""
        source = tmp_path / ".claude.json"
        source.write_text("{}")

        backup_path = create_backup(source, tmp_path / "backups", label="claude-code")

        assert re.match(r"^claude-code_\d{8}_\d{6}_\d{6}\.json$", backup_path.name)

    def test_label_derived_from_filename(self, tmp_path):
        """Test that a missing label falls back to the file's stem."""
        source = tmp_path / "settings.json"
        source.write_text("{}")

        backup_path = create_backup(source, tmp_path / "backups")

        assert backup_path.name.startswith("settings_")

    def test_rapid_backups_do_not_collide(self, tmp_path):
        """Test that two backups in the same second get distinct names."""
        source = tmp_path / "config.toml"
        source.write_text("a = 1\n")
        backup_dir = tmp_path / "backups"

        first = create_backup(source, backup_dir, label="codex")
        second = create_backup(source, backup_dir, label="codex")

        assert first != second
        assert len(list(backup_dir.iterdir())) == 2

    def test_missing_source_raises(self, tmp_path):
        """Test that backing up a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            create_backup(tmp_path / "missing.json", tmp_path / "backups")

    def test_retention_applied(self, tmp_path):
        """Test that only the newest `keep` backups per label survive."""
        source = tmp_path / "config.json"
        source.write_text("{}")
        backup_dir = tmp_path / "backups"

        for _ in range(4):
            create_backup(source, backup_dir, label="gemini-cli", keep=2)

        assert len(list(backup_dir.glob("gemini-cli_*"))) == 2


class TestRestoreBackup:
    """Tests for restore_backup function."""

    def test_restores_content(self, tmp_path):
        source = tmp_path / "opencode.json"
        source.write_text('{"mcp": {}}')
        backup_path = create_backup(source, tmp_path / "backups", label="opencode")
        source.write_text("broken")

        restore_backup(backup_path, source)

        assert source.read_text() == '{"mcp": {}}'

    def test_restores_exact_bytes(self, tmp_path):
        """Test that CRLF endings and non-UTF-8 bytes come back unchanged."""
        source = tmp_path / "config.toml"
        raw = b"# caf\xe9\r\n[mcp_servers]\r\n"
        source.write_bytes(raw)
        backup_path = create_backup(source, tmp_path / "backups", label="codex")
        source.write_text("x = 1\n")

        restore_backup(backup_path, source)

        assert source.read_bytes() == raw
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []

    def test_missing_backup_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            restore_backup(tmp_path / "nope.json", tmp_path / "target.json")


class TestCleanupOldBackups:
    """Tests for cleanup_old_backups function."""

    def _touch(self, backup_dir: Path, name: str) -> Path:
        path = backup_dir / name
        path.write_text("{}")
        return path

    def test_keeps_newest_per_label(self, tmp_path):
        """Test that each label is pruned independently, oldest first."""
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        old = self._touch(backup_dir, "claude-code_20260101_000000_000001.json")
        mid = self._touch(backup_dir, "claude-code_20260102_000000_000001.json")
        new = self._touch(backup_dir, "claude-code_20260103_000000_000001.json")
        other = self._touch(backup_dir, "codex_20260101_000000_000001.toml")

        deleted = cleanup_old_backups(backup_dir, 2)

        assert deleted == [old]
        assert mid.exists() and new.exists() and other.exists()

    def test_ignores_unrelated_files(self, tmp_path):
        """Test that files not matching the backup pattern are left alone."""
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        notes = self._touch(backup_dir, "notes.txt")

        assert cleanup_old_backups(backup_dir, 0) == []
        assert notes.exists()

    def test_missing_dir(self, tmp_path):
        """Test that a missing backup dir is not an error."""
        assert cleanup_old_backups(tmp_path / "nope") == []
