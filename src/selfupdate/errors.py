"""
Error types for the self-update tool.

This module defines the SelfUpdateError base class and the subclasses raised
by the update sequence. Every error raised after the mutex is acquired is
caught once by the orchestrator, written to the run log and reported; nothing
propagates past the orchestrator except the process exit status.
"""

from __future__ import annotations

from typing import Any


class SelfUpdateError(Exception):
    """
    Base exception class for self-update errors.

    Attributes:
        error_code: Internal error code string (e.g., "configuration",
            "command_failed", "vcs", "lock_contention").
        message: Human-readable error message.
        details: Optional structured details (e.g., command, exit code).

    Example:
        >>> raise SelfUpdateError(
        ...     error_code="configuration",
        ...     message="'/var/www/httpdocs' is not a symbolic link.",
        ...     details={"link": "/var/www/httpdocs"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a SelfUpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class LockContentionError(SelfUpdateError):
    """
    Error raised when another update run already holds the mutex.

    This is terminal: the second invocation exits immediately without
    waiting or retrying.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a LockContentionError."""
        super().__init__(
            error_code="lock_contention", message=message, details=details
        )


class ConfigurationError(SelfUpdateError):
    """
    Error raised for invalid or incomplete configuration.

    Covers malformed web path mappings, an undetectable version control
    system and hook entries that are neither shell commands nor callables.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConfigurationError."""
        super().__init__(error_code="configuration", message=message, details=details)


class CommandExecutionError(SelfUpdateError):
    """
    Error raised when a shell command fails.

    A command fails when it exits with a non-zero code, or when it exits
    cleanly but its output contains one of the configured error keywords.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CommandExecutionError."""
        super().__init__(
            error_code="command_failed", message=message, details=details
        )


class VcsError(SelfUpdateError):
    """
    Error raised when a version control backend cannot determine its state.

    Raised, for example, when the current Git branch cannot be detected or
    when the remote check command fails.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a VcsError."""
        super().__init__(error_code="vcs", message=message, details=details)
