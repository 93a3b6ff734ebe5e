# ABOUTME: All-or-nothing file writes for client config files
import os
import shutil
import tempfile
from pathlib import Path


def write_text_atomic(path: Path, content: str) -> None:
    """Write text to path via a sibling temp file and rename.

    ABOUTME: Readers see either the old or the new content, never a partial file
    ABOUTME: Creates parent directories if needed

    Raises:
        OSError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_text_or_none(path: Path) -> str | None:
    """Return file text, or None if the file doesn't exist or can't be read."""
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def copy_file_atomic(source: Path, target: Path) -> None:
    """Copy source over target byte for byte via a sibling temp file and rename.

    ABOUTME: Line endings and encoding are untouched; metadata follows shutil.copy2

    Raises:
        OSError: If the copy or rename fails
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    os.close(fd)
    try:
        shutil.copy2(source, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
