"""
Filesystem operations used during an update run.

This module implements:
- Safe directory creation
- Atomic symlink switching (using a temporary symlink + os.rename)
- Clearing temporary directories while keeping VCS ignore markers

CRITICAL: Symlink switching must be atomic so the web server never sees a
missing document root. The pattern is:
1. Create temp symlink: os.symlink(target, temp_path)
2. Atomic rename: os.rename(temp_path, final_path)
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

from selfupdate.errors import ConfigurationError, SelfUpdateError
from selfupdate.logging import get_logger

logger = get_logger(__name__)

# Entries kept when a temporary directory is cleared
IGNORE_MARKERS = frozenset(
    {".htaccess", ".gitignore", ".gitkeep", ".hgignore", ".hgkeep"}
)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        ConfigurationError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise ConfigurationError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def read_symlink(symlink_path: Path) -> Path | None:
    """
    Read the target of a symlink as an absolute, normalized path.

    Relative link targets are interpreted against the link's parent
    directory. The target itself is not resolved further.

    Args:
        symlink_path: Path to the symlink.

    Returns:
        The link target, or None if ``symlink_path`` is not a symlink.
    """
    if not symlink_path.is_symlink():
        return None

    target = Path(os.readlink(symlink_path))
    if not target.is_absolute():
        target = symlink_path.parent / target
    return Path(os.path.normpath(target))


def atomic_symlink_switch(target: Path, symlink_path: Path) -> None:
    """
    Atomically switch a symlink to point to a new target.

    Args:
        target: The directory the symlink should point to.
        symlink_path: The path where the symlink should be created/updated.

    Raises:
        ConfigurationError: If the target doesn't exist.
        SelfUpdateError: If the atomic switch fails.
    """
    if not target.exists():
        raise ConfigurationError(
            f"Symlink target does not exist: {target}",
            details={"target": str(target)},
        )

    # The temp symlink must live in the same directory for rename to be atomic
    temp_path = symlink_path.parent / f".symlink_tmp_{uuid.uuid4().hex}"
    try:
        os.symlink(str(target), temp_path)
        os.rename(temp_path, symlink_path)
    except OSError as e:
        if os.path.lexists(temp_path):
            os.unlink(temp_path)
        raise SelfUpdateError(
            error_code="filesystem",
            message=f"Failed to switch symlink '{symlink_path}' to '{target}': {e}",
            details={"symlink": str(symlink_path), "target": str(target)},
        ) from e

    logger.debug(
        "Atomic symlink switch completed",
        extra={"symlink": str(symlink_path), "target": str(target)},
    )


def clear_directory(path: Path, keep: frozenset[str] = IGNORE_MARKERS) -> int:
    """
    Remove the contents of a directory.

    Entries named in ``keep`` are preserved; every other file, symlink and
    subdirectory (with all of its contents) is removed.

    Args:
        path: Directory to clear.
        keep: Entry names to preserve.

    Returns:
        Number of top-level entries removed. 0 if the directory is missing.
    """
    if not path.is_dir():
        return 0

    removed = 0
    for entry in path.iterdir():
        if entry.name in keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1

    logger.debug("Directory cleared", extra={"path": str(path), "removed": removed})
    return removed
