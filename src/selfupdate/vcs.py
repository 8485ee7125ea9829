"""
Version control backends for the self-update tool.

A backend answers two questions about a working copy: does the remote hold
changes we do not have, and can we pull them in. Git and Mercurial answer
the first question differently (Git diffs against the fetched remote branch,
Mercurial relies on the exit code of ``hg incoming``) and each backend keeps
its own notion of "changes present".
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple, Protocol

from selfupdate.config import GitConfig, MercurialConfig, VcsConfig
from selfupdate.errors import ConfigurationError, VcsError
from selfupdate.logging import get_logger
from selfupdate.shell import CommandRunner

logger = get_logger(__name__)

# ``hg incoming`` exits 0 when changesets are found and 1 when there are none
HG_INCOMING_FOUND = 0
HG_INCOMING_NONE = 1


class VcsResult(NamedTuple):
    """Outcome of a backend operation together with its log text."""

    ok: bool
    log: str


class VersionControlSystem(Protocol):
    """Capability contract shared by all version control backends."""

    def has_remote_changes(self, project_root: Path) -> VcsResult:
        """Check whether the remote holds changes missing locally."""
        ...

    def apply_remote_changes(self, project_root: Path) -> VcsResult:
        """Pull remote changes into the local working copy."""
        ...


@dataclass
class GitBackend:
    """
    Git backend.

    Attributes:
        bin_path: Path to the ``git`` binary.
        remote_name: Name of the remote to compare against.
        runner: Command runner used for every git invocation.
    """

    bin_path: str = "git"
    remote_name: str = "origin"
    runner: CommandRunner = field(default_factory=CommandRunner)

    def _placeholders(self, project_root: Path) -> dict[str, str]:
        return {
            "{binPath}": self.bin_path,
            "{projectRoot}": str(project_root),
            "{remote}": self.remote_name,
        }

    def current_branch(self, project_root: Path) -> str:
        """
        Detect the currently checked out branch.

        Args:
            project_root: Working copy root.

        Returns:
            Branch name.

        Raises:
            VcsError: If no branch is marked as active.
        """
        result = self.runner.execute(
            "(cd {projectRoot}; {binPath} branch)", self._placeholders(project_root)
        )
        for line in result.output_lines:
            if line.startswith("* "):
                return line[2:].strip()

        raise VcsError(
            f"Unable to detect current GIT branch: {result}",
            details={"command": result.command, "exit_code": result.exit_code},
        )

    def has_remote_changes(self, project_root: Path) -> VcsResult:
        """
        Fetch the remote and diff HEAD against the remote branch.

        Raises:
            VcsError: If the branch cannot be detected or fetch/diff fails.
        """
        placeholders = self._placeholders(project_root)
        placeholders["{branch}"] = self.current_branch(project_root)

        fetch = self.runner.execute(
            "(cd {projectRoot}; {binPath} fetch {remote})", placeholders
        )
        if not fetch.is_ok():
            raise VcsError(
                f"Unable to fetch remote changes:\n{fetch}",
                details={"command": fetch.command, "exit_code": fetch.exit_code},
            )

        diff = self.runner.execute(
            "(cd {projectRoot}; {binPath} diff --numstat HEAD {remote}/{branch})",
            placeholders,
        )
        log = f"{fetch}\n{diff}"
        if not diff.is_ok():
            raise VcsError(
                f"Unable to compare with remote branch:\n{log}",
                details={"command": diff.command, "exit_code": diff.exit_code},
            )

        return VcsResult(diff.is_ok() and not diff.is_output_empty(), log)

    def apply_remote_changes(self, project_root: Path) -> VcsResult:
        """Merge the remote branch into the current branch."""
        placeholders = self._placeholders(project_root)
        placeholders["{branch}"] = self.current_branch(project_root)

        result = self.runner.execute(
            "(cd {projectRoot}; {binPath} merge {remote}/{branch})", placeholders
        )
        return VcsResult(result.is_ok(), str(result))


@dataclass
class MercurialBackend:
    """
    Mercurial backend.

    Attributes:
        bin_path: Path to the ``hg`` binary.
        runner: Command runner used for every hg invocation.
    """

    bin_path: str = "hg"
    runner: CommandRunner = field(default_factory=CommandRunner)

    def _placeholders(self, project_root: Path) -> dict[str, str]:
        return {"{binPath}": self.bin_path, "{projectRoot}": str(project_root)}

    def has_remote_changes(self, project_root: Path) -> VcsResult:
        """
        Run ``hg incoming`` and interpret its exit code.

        Exit code 0 means incoming changesets were found and 1 means there
        are none. Any other code is an error.

        Raises:
            VcsError: If ``hg incoming`` fails.
        """
        result = self.runner.execute(
            "{binPath} --repository {projectRoot} incoming",
            self._placeholders(project_root),
        )
        if result.exit_code == HG_INCOMING_FOUND:
            return VcsResult(True, result.output)
        if result.exit_code == HG_INCOMING_NONE:
            return VcsResult(False, result.output)

        raise VcsError(
            f"Unable to check incoming changes:\n{result}",
            details={"command": result.command, "exit_code": result.exit_code},
        )

    def apply_remote_changes(self, project_root: Path) -> VcsResult:
        """Pull and update the working copy."""
        result = self.runner.execute(
            "(cd {projectRoot}; {binPath} pull -u)", self._placeholders(project_root)
        )
        return VcsResult(result.is_ok(), result.output)


def build_backend(
    config: VcsConfig, runner: CommandRunner | None = None
) -> VersionControlSystem:
    """
    Create a backend from its configuration variant.

    Args:
        config: Git or Mercurial backend configuration.
        runner: Optional command runner shared with the orchestrator.

    Returns:
        The configured backend.
    """
    runner = runner or CommandRunner()
    if isinstance(config, GitConfig):
        return GitBackend(
            bin_path=config.bin_path, remote_name=config.remote_name, runner=runner
        )
    if isinstance(config, MercurialConfig):
        return MercurialBackend(bin_path=config.bin_path, runner=runner)

    raise ConfigurationError(
        f"Unsupported version control system configuration: {config!r}"
    )


def detect_backend(
    project_root: Path,
    backends: Mapping[str, VcsConfig],
    runner: CommandRunner | None = None,
) -> VersionControlSystem:
    """
    Detect the version control system that manages ``project_root``.

    The first marker entry (e.g. ``.git``) found under the project root wins,
    in the order of the ``backends`` mapping.

    Args:
        project_root: Working copy root.
        backends: Ordered mapping of marker name to backend configuration.
        runner: Optional command runner passed to the backend.

    Returns:
        The backend for the first marker present.

    Raises:
        ConfigurationError: If none of the markers exist.
    """
    for marker, config in backends.items():
        if (project_root / marker).exists():
            logger.debug(
                "Detected version control system",
                extra={"marker": marker, "project_root": str(project_root)},
            )
            return build_backend(config, runner)

    raise ConfigurationError(
        "Unable to detect version control system: neither of "
        f"'{', '.join(backends)}' is present under '{project_root}'.",
        details={"project_root": str(project_root), "markers": list(backends)},
    )
