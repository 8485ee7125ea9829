"""
Shell command execution for the self-update tool.

Commands are composed from templates with ``{placeholder}`` markers. Each
placeholder value is single-quoted before substitution, so paths containing
spaces or shell metacharacters reach the program as one argument.

The runner never raises for a non-zero exit code: the CommandResult encodes
the failure and the caller decides what to do with it.
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from selfupdate.logging import get_logger

logger = get_logger(__name__)

SHELL_EXECUTABLE = "/bin/sh"


def escape_shell_arg(value: Any) -> str:
    """
    Quote a value as a single shell argument.

    The value is always wrapped in single quotes; embedded single quotes are
    closed, escaped and reopened, so ``it's`` becomes ``'it'\\''s'``.

    Args:
        value: Value to quote. Non-string values are converted with ``str()``.

    Returns:
        The quoted argument.
    """
    return "'" + str(value).replace("'", "'\\''") + "'"


def substitute_placeholders(template: str, placeholders: Mapping[str, Any]) -> str:
    """
    Replace placeholder keys in a command template with quoted values.

    Replacement is done in a single pass with the longest keys tried first,
    so substituted values are never scanned for further placeholders.

    Args:
        template: Command template, e.g. ``"(cd {projectRoot}; {binPath} pull)"``.
        placeholders: Mapping of placeholder key to raw value.

    Returns:
        The command with every placeholder replaced.
    """
    if not placeholders:
        return template

    quoted = {key: escape_shell_arg(value) for key, value in placeholders.items()}
    pattern = re.compile(
        "|".join(re.escape(key) for key in sorted(quoted, key=len, reverse=True))
    )
    return pattern.sub(lambda match: quoted[match.group(0)], template)


def _normalize_option_name(name: str) -> str:
    if not name.startswith("-"):
        return f"--{name}"
    return name


def build_option_string(
    options: Mapping[str, Any] | Iterable[str | tuple[str, Any]],
) -> str:
    """
    Build a shell option string from option names and values.

    Flag-only options render as ``--name`` and valued options as
    ``--name='value'``. The ``--`` prefix is only added when the name does not
    already start with a dash. Input order is preserved.

    Args:
        options: Either a mapping of ``name -> value`` (a value of ``None`` or
            ``True`` marks a flag-only option), or a sequence whose items are
            flag names or ``(name, value)`` pairs.

    Returns:
        Space-joined option string.

    Example:
        >>> build_option_string(["verbose", ("username", "root")])
        "--verbose --username='root'"
    """
    if isinstance(options, Mapping):
        items: Iterable[str | tuple[str, Any]] = [
            name if value is None or value is True else (name, value)
            for name, value in options.items()
        ]
    else:
        items = options

    parts: list[str] = []
    for item in items:
        if isinstance(item, str):
            parts.append(_normalize_option_name(item))
        else:
            name, value = item
            parts.append(f"{_normalize_option_name(name)}={escape_shell_arg(value)}")
    return " ".join(parts)


@dataclass(frozen=True)
class CommandResult:
    """
    Result of a shell command execution.

    Attributes:
        command: The command string actually executed.
        exit_code: Process exit code.
        output_lines: Merged stdout/stderr lines in emission order.
    """

    command: str
    exit_code: int
    output_lines: tuple[str, ...] = field(default_factory=tuple)

    def is_ok(self) -> bool:
        """Whether the command exited with code 0."""
        return self.exit_code == 0

    def get_output(self, glue: str = "\n") -> str:
        """Return the output lines joined with ``glue``."""
        return glue.join(self.output_lines)

    @property
    def output(self) -> str:
        """Command output as a single string."""
        return self.get_output()

    def is_output_empty(self) -> bool:
        """Whether the command produced no output at all."""
        return not self.output_lines

    def output_contains(self, needle: str) -> bool:
        """Case-insensitive substring check against the output."""
        return needle.lower() in self.output.lower()

    def output_matches(self, pattern: str | re.Pattern[str]) -> bool:
        """Whether the output matches the given regular expression."""
        return re.search(pattern, self.output) is not None

    def to_string(self) -> str:
        """
        Format the result as a log trace.

        Returns:
            Command, output and exit code on separate lines.
        """
        return f"{self.command}\n{self.output}\nExit code: {self.exit_code}"

    def __str__(self) -> str:
        return self.to_string()


class CommandRunner:
    """
    Executes shell commands and captures their output.

    Commands run through ``/bin/sh`` with stderr redirected into stdout, so
    output lines keep the order in which the program emitted them. There is
    no timeout: a hung command blocks the caller indefinitely.
    """

    def __init__(self, shell: str = SHELL_EXECUTABLE) -> None:
        self.shell = shell

    def execute(
        self,
        template: str,
        placeholders: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """
        Execute a command template.

        Args:
            template: Command template with optional placeholder keys.
            placeholders: Mapping of placeholder key to raw value. Values are
                shell-quoted before substitution.

        Returns:
            CommandResult with the executed command, exit code and output.
        """
        command = substitute_placeholders(template, placeholders or {})
        logger.debug("Executing shell command", extra={"command": command})

        completed = subprocess.run(  # noqa: S602 - templates come from configuration
            command,
            shell=True,
            executable=self.shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
        output = completed.stdout.decode("utf-8", errors="replace")

        return CommandResult(
            command=command,
            exit_code=completed.returncode,
            output_lines=tuple(output.splitlines()),
        )


_default_runner = CommandRunner()


def execute(
    template: str,
    placeholders: Mapping[str, Any] | None = None,
) -> CommandResult:
    """Execute a command template with the default CommandRunner."""
    return _default_runner.execute(template, placeholders)
