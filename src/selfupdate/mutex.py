"""
Host-local mutual exclusion for update runs.

FileMutex takes a non-blocking ``flock`` on a lock file derived from the
mutex name. The kernel drops the lock when the holding process exits, so a
killed run never leaves a stale lock behind.
"""

from __future__ import annotations

import fcntl
import hashlib
import os
from pathlib import Path
from typing import Protocol

from selfupdate.errors import ConfigurationError
from selfupdate.logging import get_logger
from selfupdate.operations import ensure_directory

logger = get_logger(__name__)


class Mutex(Protocol):
    """Named lock contract used by the orchestrator."""

    def acquire(self, name: str) -> bool:
        """Try to take the lock without waiting. Returns False if held."""
        ...

    def release(self, name: str) -> bool:
        """Release a lock previously acquired by this instance."""
        ...


class FileMutex:
    """
    Named mutex backed by ``flock`` on files in a lock directory.

    Attributes:
        directory: Directory holding the lock files.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._handles: dict[str, int] = {}

    def lock_file_path(self, name: str) -> Path:
        """Lock file used for ``name``."""
        digest = hashlib.md5(name.encode("utf-8")).hexdigest()  # noqa: S324
        return self.directory / f"{digest}.lock"

    def acquire(self, name: str) -> bool:
        """
        Try to acquire the named lock without blocking.

        Args:
            name: Mutex name.

        Returns:
            True if the lock was acquired, False if another holder has it.

        Raises:
            ConfigurationError: If the lock directory or file is unusable.
        """
        if name in self._handles:
            return False

        ensure_directory(self.directory)
        path = self.lock_file_path(name)
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise ConfigurationError(
                f"Unable to open lock file: {path}",
                details={"mutex": name, "path": str(path), "error": str(e)},
            ) from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.debug("Mutex is held by another process", extra={"mutex": name})
            return False

        self._handles[name] = fd
        logger.debug("Mutex acquired", extra={"mutex": name})
        return True

    def release(self, name: str) -> bool:
        """
        Release the named lock.

        Returns:
            True if a held lock was released, False if it was not held.
        """
        fd = self._handles.pop(name, None)
        if fd is None:
            return False

        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Mutex released", extra={"mutex": name})
        return True
