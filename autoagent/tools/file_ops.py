"""File operations for AutoAgent.

Paths arrive already resolved and already cleared by the PolicyEngine.
Writes keep a ``.bak`` copy of any file they overwrite.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from autoagent.core.exceptions import ToolError

logger = logging.getLogger("autoagent.tools.file_ops")


def read_file(path: str | Path) -> dict:
    """Read a UTF-8 text file.

    Returns:
        ``{"path", "content", "size"}`` with size in bytes.

    Raises:
        ToolError: If the file doesn't exist or can't be read.
    """
    p = Path(path)
    if not p.is_file():
        raise ToolError(f"File not found: {p}")
    try:
        content = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ToolError(f"Failed to read {p}: {e}") from e
    return {"path": str(p), "content": content, "size": len(content.encode("utf-8"))}


def write_file(path: str | Path, content: str, backup: bool = True) -> dict:
    """Write content to a file, creating parent directories as needed.

    Args:
        path: Target file path.
        content: Content to write.
        backup: If True and the file exists, copy it to ``<path>.bak`` first.

    Raises:
        ToolError: If the write fails or the target is a symlink.
    """
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)

        if p.is_symlink():
            raise ToolError(f"Refusing to write through symlink: {p}")
        if backup and p.exists():
            backup_path = p.with_suffix(p.suffix + ".bak")
            shutil.copy2(p, backup_path)
            logger.debug("Backup created: %s", backup_path)

        p.write_text(content, encoding="utf-8")
    except ToolError:
        raise
    except OSError as e:
        raise ToolError(f"Failed to write {p}: {e}") from e

    size = len(content.encode("utf-8"))
    logger.debug("Wrote %d bytes to %s", size, p)
    return {"path": str(p), "size": size}


def delete_file(path: str | Path) -> dict:
    p = Path(path)
    if not p.exists() and not p.is_symlink():
        raise ToolError(f"File not found: {p}")
    if p.is_dir() and not p.is_symlink():
        raise ToolError(f"Refusing to delete a directory: {p}")
    try:
        p.unlink()
    except OSError as e:
        raise ToolError(f"Failed to delete {p}: {e}") from e
    logger.info("Deleted %s", p)
    return {"path": str(p), "deleted": True}


def create_directory(path: str | Path) -> dict:
    p = Path(path)
    if p.exists() and not p.is_dir():
        raise ToolError(f"Path exists and is not a directory: {p}")
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ToolError(f"Failed to create directory {p}: {e}") from e
    return {"path": str(p), "created": True}


def list_directory(path: str | Path, pattern: str = "*", recursive: bool = False) -> dict:
    """List entries of a directory matching a glob pattern.

    Entries are reported relative to ``path``.
    """
    d = Path(path)
    if not d.is_dir():
        raise ToolError(f"Directory not found: {d}")

    matches = sorted(d.rglob(pattern) if recursive else d.glob(pattern))
    entries = []
    for m in matches:
        is_dir = m.is_dir()
        entries.append({
            "name": str(m.relative_to(d)),
            "type": "directory" if is_dir else "file",
            "size": None if is_dir else m.stat().st_size,
        })
    return {"path": str(d), "entries": entries, "count": len(entries)}
