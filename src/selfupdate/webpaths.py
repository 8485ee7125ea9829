"""
Web path mappings: the symlinks switched to a maintenance stub while an
update is in progress.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from selfupdate.config import WebPathConfig
from selfupdate.errors import ConfigurationError
from selfupdate.operations import atomic_symlink_switch, read_symlink


@dataclass(frozen=True)
class WebPathMapping:
    """
    A web root served through a symbolic link.

    Attributes:
        live_path: Live web root directory.
        link_path: Symbolic link the web server serves from.
        stub_path: Maintenance stub directory.
    """

    live_path: Path
    link_path: Path
    stub_path: Path

    @classmethod
    def from_config(cls, config: WebPathConfig) -> WebPathMapping:
        """Build a mapping from its configuration entry."""
        return cls(
            live_path=Path(os.path.normpath(config.path)),
            link_path=Path(os.path.normpath(config.link)),
            stub_path=Path(os.path.normpath(config.stub)),
        )

    def validate(self) -> None:
        """
        Check the mapping against the filesystem.

        Raises:
            ConfigurationError: If the live or stub path is not a directory,
                the link is not a symbolic link, or the link points to
                neither the live nor the stub directory.
        """
        details = {
            "path": str(self.live_path),
            "link": str(self.link_path),
            "stub": str(self.stub_path),
        }
        if not self.live_path.is_dir():
            raise ConfigurationError(
                f"'{self.live_path}' is not a directory.", details=details
            )
        if not self.stub_path.is_dir():
            raise ConfigurationError(
                f"'{self.stub_path}' is not a directory.", details=details
            )

        target = read_symlink(self.link_path)
        if target is None:
            raise ConfigurationError(
                f"'{self.link_path}' is not a symbolic link.", details=details
            )
        if target not in (self.live_path, self.stub_path):
            raise ConfigurationError(
                f"'{self.link_path}' does not point to actual web or stub directory.",
                details={**details, "target": str(target)},
            )

    def link_stub(self) -> None:
        """Point the link at the maintenance stub."""
        atomic_symlink_switch(self.stub_path, self.link_path)

    def link_live(self) -> None:
        """Point the link at the live web root."""
        atomic_symlink_switch(self.live_path, self.link_path)


def load_web_paths(configs: Iterable[WebPathConfig]) -> list[WebPathMapping]:
    """
    Build and validate web path mappings.

    Raises:
        ConfigurationError: On the first invalid mapping.
    """
    mappings = [WebPathMapping.from_config(config) for config in configs]
    for mapping in mappings:
        mapping.validate()
    return mappings
