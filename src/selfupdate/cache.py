"""
Cache flushers run after remote changes are applied.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from selfupdate.config import CacheConfig, CommandCacheConfig, DirectoryCacheConfig
from selfupdate.errors import CommandExecutionError
from selfupdate.operations import clear_directory
from selfupdate.shell import CommandRunner


class Cache(Protocol):
    """Anything that can be flushed."""

    name: str

    def flush(self) -> None:
        """Drop every cached entry."""
        ...


class DirectoryCache:
    """File cache stored in a directory; flushing removes its contents."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.name = str(self.path)

    def flush(self) -> None:
        clear_directory(self.path)


class CommandCache:
    """Cache flushed by a shell command, e.g. ``redis-cli FLUSHDB``."""

    def __init__(self, command: str, runner: CommandRunner | None = None) -> None:
        self.command = command
        self.name = command
        self.runner = runner or CommandRunner()

    def flush(self) -> None:
        """
        Run the flush command.

        Raises:
            CommandExecutionError: If the command exits with a non-zero code.
        """
        result = self.runner.execute(self.command)
        if not result.is_ok():
            raise CommandExecutionError(
                f"Unable to flush cache:\n{result}",
                details={"command": result.command, "exit_code": result.exit_code},
            )


def build_cache(config: CacheConfig, runner: CommandRunner | None = None) -> Cache:
    """Create a cache flusher from its configuration variant."""
    if isinstance(config, DirectoryCacheConfig):
        return DirectoryCache(config.path)
    if isinstance(config, CommandCacheConfig):
        return CommandCache(config.command, runner)
    raise TypeError(f"Unsupported cache configuration: {config!r}")
