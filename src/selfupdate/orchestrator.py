"""
Update orchestration for the self-update tool.

This module implements the SelfUpdater class that runs the complete update
sequence under a host-local mutex.

State machine states:
- idle: No run in progress
- lock_held: Mutex acquired, configuration being validated
- updating: Update sequence running
- success: Sequence completed, or project already up-to-date
- failed: A step raised; remaining steps were skipped
- lock_released: Mutex released, run finished

The update sequence, stopping at the first failure:
1. Check the remote for changes (stop with success if there are none)
2. Link web roots to their maintenance stubs
3. Run before-update hooks
4. Apply remote changes
5. Install dependencies
6. Flush caches
7. Clear temporary directories
8. Run after-update hooks
9. Link web roots back to the live directories

A failed run leaves the web roots on the stub so broken code is never served.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from selfupdate.cache import Cache, build_cache
from selfupdate.config import SelfUpdateConfig
from selfupdate.errors import (
    CommandExecutionError,
    ConfigurationError,
    LockContentionError,
    SelfUpdateError,
)
from selfupdate.logging import get_logger
from selfupdate.mutex import FileMutex, Mutex
from selfupdate.operations import clear_directory
from selfupdate.report import Mailer, Reporter, SmtpMailer
from selfupdate.shell import CommandResult, CommandRunner, build_option_string
from selfupdate.vcs import VersionControlSystem, detect_backend
from selfupdate.webpaths import WebPathMapping, load_web_paths

logger = get_logger(__name__)

EXIT_CODE_NORMAL = 0
EXIT_CODE_ERROR = 1

NO_INTERACTION_OPTION = "no-interaction"

Hook = str | Callable[..., Any]


class UpdateState(str, Enum):
    """
    States of an update run.

    State transitions:
    - idle → lock_held (mutex acquired)
    - lock_held → updating (configuration validated)
    - lock_held → failed (invalid configuration)
    - updating → success | failed
    - success | failed → lock_released (mutex released)
    - lock_released → idle (next run)
    """

    IDLE = "idle"
    LOCK_HELD = "lock_held"
    UPDATING = "updating"
    SUCCESS = "success"
    FAILED = "failed"
    LOCK_RELEASED = "lock_released"


_VALID_TRANSITIONS: dict[UpdateState, set[UpdateState]] = {
    UpdateState.IDLE: {UpdateState.LOCK_HELD},
    UpdateState.LOCK_HELD: {UpdateState.UPDATING, UpdateState.FAILED},
    UpdateState.UPDATING: {UpdateState.SUCCESS, UpdateState.FAILED},
    UpdateState.SUCCESS: {UpdateState.LOCK_RELEASED},
    UpdateState.FAILED: {UpdateState.LOCK_RELEASED},
    UpdateState.LOCK_RELEASED: {UpdateState.IDLE},
}


class UpdateOutcome(str, Enum):
    """Terminal outcome of a run."""

    SUCCEEDED = "succeeded"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"
    LOCKED = "locked"


class UpdateRunResult(BaseModel):
    """
    Result of a single ``perform`` call.

    Attributes:
        outcome: Terminal outcome.
        exit_code: Process exit status for the outcome.
        message: Error message for failed or locked runs.
        log: Run log lines, in order.
    """

    outcome: UpdateOutcome = Field(..., description="Terminal outcome")
    exit_code: int = Field(..., description="Process exit status")
    message: str | None = Field(default=None, description="Error message")
    log: list[str] = Field(default_factory=list, description="Run log lines")

    @property
    def ok(self) -> bool:
        """Whether the run ended normally."""
        return self.exit_code == EXIT_CODE_NORMAL


class SelfUpdater:
    """
    Runs the project update from its version control remote.

    Collaborators are injected explicitly; the defaults are built from the
    configuration.

    Attributes:
        config: Validated configuration with absolute paths.
        mutex: Host-local named mutex.
        caches: Caches flushed after the update.
        runner: Shell command runner.
        reporter: Run log and report sender.
        action: Action identity used in the mutex name.
    """

    def __init__(
        self,
        config: SelfUpdateConfig,
        *,
        mutex: Mutex | None = None,
        caches: Iterable[Cache] | None = None,
        mailer: Mailer | None = None,
        fallback_mailer: Mailer | None = None,
        runner: CommandRunner | None = None,
        reporter: Reporter | None = None,
        action: str = "perform",
    ) -> None:
        self.config = config
        self.runner = runner or CommandRunner()
        self.mutex = mutex or FileMutex(config.mutex.directory)
        if caches is None:
            caches = [build_cache(c, self.runner) for c in config.cache]
        self.caches = list(caches)
        if mailer is None and config.mailer is not None:
            mailer = SmtpMailer(config.mailer)
        self.reporter = reporter or Reporter(
            config.emails, mailer=mailer, fallback_mailer=fallback_mailer
        )
        self.action = action
        self.web_paths: list[WebPathMapping] = []
        self._state = UpdateState.IDLE

    @property
    def state(self) -> UpdateState:
        """Get the current state."""
        return self._state

    @property
    def mutex_name(self) -> str:
        """Name of the mutex guarding this action."""
        return f"{__name__}.{type(self).__name__}::{self.action}"

    @property
    def project_root(self) -> Path:
        """Project (VCS) root directory."""
        return Path(self.config.project_root_path)

    def _transition_to(self, new_state: UpdateState) -> None:
        current = self._state
        if new_state not in _VALID_TRANSITIONS[current]:
            raise SelfUpdateError(
                error_code="internal",
                message=(
                    f"Invalid state transition from {current.value} to {new_state.value}"
                ),
                details={"current_state": current.value, "target_state": new_state.value},
            )

        logger.debug(
            f"State transition: {current.value} -> {new_state.value}",
            extra={"old_state": current.value, "new_state": new_state.value},
        )
        self._state = new_state

    def log(self, message: str) -> None:
        """Write a line to the run log."""
        self.reporter.log(message)

    # -------------------------------------------------------------------------
    # Run boundary
    # -------------------------------------------------------------------------

    def acquire_lock(self) -> None:
        """
        Acquire the action mutex without waiting.

        Raises:
            LockContentionError: If another run holds the mutex.
            ConfigurationError: If the mutex storage is unusable.
        """
        if self._state == UpdateState.LOCK_RELEASED:
            self._transition_to(UpdateState.IDLE)

        if not self.mutex.acquire(self.mutex_name):
            raise LockContentionError(
                "Execution terminated: command is already running.",
                details={"mutex": self.mutex_name},
            )
        self._transition_to(UpdateState.LOCK_HELD)

    def perform(self) -> UpdateRunResult:
        """
        Run the full update under the mutex.

        This is the only place where errors raised by the update sequence are
        caught. The mutex is always released.

        Returns:
            UpdateRunResult with the outcome and exit code.
        """
        try:
            self.acquire_lock()
        except LockContentionError as e:
            logger.error(e.message, extra=e.details)
            return UpdateRunResult(
                outcome=UpdateOutcome.LOCKED,
                exit_code=EXIT_CODE_ERROR,
                message=e.message,
            )
        except Exception as e:
            # The mutex was never taken, so there is nothing to release
            message = e.message if isinstance(e, SelfUpdateError) else str(e)
            logger.error(f"Unable to acquire mutex: {message}")
            self.log(message)
            log = self.reporter.lines
            self._send_report(success=False)
            return UpdateRunResult(
                outcome=UpdateOutcome.FAILED,
                exit_code=EXIT_CODE_ERROR,
                message=message,
                log=log,
            )

        try:
            outcome = self.run_update()
            self._transition_to(UpdateState.SUCCESS)
            log = self.reporter.lines
            if outcome == UpdateOutcome.SUCCEEDED:
                self._send_report(success=True)
            else:
                self.reporter.flush()
            return UpdateRunResult(
                outcome=outcome, exit_code=EXIT_CODE_NORMAL, log=log
            )
        except Exception as e:
            self._transition_to(UpdateState.FAILED)
            message = e.message if isinstance(e, SelfUpdateError) else str(e)
            self.log(message)
            logger.debug("Update failed", exc_info=True)
            log = self.reporter.lines
            self._send_report(success=False)
            return UpdateRunResult(
                outcome=UpdateOutcome.FAILED,
                exit_code=EXIT_CODE_ERROR,
                message=message,
                log=log,
            )
        finally:
            self.mutex.release(self.mutex_name)
            self._transition_to(UpdateState.LOCK_RELEASED)

    def _send_report(self, *, success: bool) -> None:
        try:
            if success:
                self.reporter.report_success()
            else:
                self.reporter.report_fail()
        except Exception as e:
            logger.error(f"Unable to send execution report: {e}")

    # -------------------------------------------------------------------------
    # Update sequence
    # -------------------------------------------------------------------------

    def prepare(self) -> VersionControlSystem:
        """
        Validate configuration and detect the version control system.

        Raises:
            ConfigurationError: On invalid web paths, a missing project root
                or an undetectable version control system.
        """
        self.web_paths = load_web_paths(self.config.web_paths)

        if not self.project_root.is_dir():
            raise ConfigurationError(
                f"Project root '{self.project_root}' is not a directory.",
                details={"project_root": str(self.project_root)},
            )

        return detect_backend(
            self.project_root, self.config.version_control_systems, self.runner
        )

    def run_update(self) -> UpdateOutcome:
        """
        Run the update sequence. Must be called with the mutex held.

        Returns:
            SUCCEEDED if remote changes were applied, UP_TO_DATE otherwise.

        Raises:
            SelfUpdateError: On the first failing step.
        """
        self.log("Checking for updates...")
        vcs = self.prepare()
        self._transition_to(UpdateState.UPDATING)

        changes_detected, log = vcs.has_remote_changes(self.project_root)
        self.log(log)
        if not changes_detected:
            self.log("No changes detected. Project is already up-to-date.")
            return UpdateOutcome.UP_TO_DATE

        self.log("Remote changes detected.")

        self.link_web_stubs()
        self.log("Link to web stubs created.")

        self.run_hooks(self.config.before_update_commands)

        changes_applied, log = vcs.apply_remote_changes(self.project_root)
        self.log(log)
        if not changes_applied:
            raise CommandExecutionError("Unable to apply remote changes.")
        self.log("Remote changes applied.")

        self.update_vendor()
        self.flush_cache()
        self.clear_tmp_directories()

        self.run_hooks(self.config.after_update_commands)

        self.link_web_paths()
        self.log("Links to web directories restored.")

        return UpdateOutcome.SUCCEEDED

    def link_web_stubs(self) -> None:
        """Link web roots to their stub directories."""
        for web_path in self.web_paths:
            web_path.link_stub()

    def link_web_paths(self) -> None:
        """Link web roots to the live web directories."""
        for web_path in self.web_paths:
            web_path.link_live()

    def run_hooks(self, hooks: Iterable[Hook]) -> None:
        """
        Run hooks in order; the first failing hook aborts the rest.

        String hooks are shell commands. Callable hooks receive this updater
        and fail by raising or by returning ``False``.

        Raises:
            ConfigurationError: On an entry that is neither a string nor callable.
            CommandExecutionError: If a hook fails.
        """
        for hook in hooks:
            if isinstance(hook, str):
                self.exec_shell_command(hook)
            elif callable(hook):
                name = getattr(hook, "__qualname__", repr(hook))
                self.log(f"Running '{name}'")
                if hook(self) is False:
                    raise CommandExecutionError(
                        f"Hook '{name}' failed.", details={"hook": name}
                    )
            else:
                raise ConfigurationError(
                    f"Hook must be a shell command or a callable, {type(hook).__name__} given.",
                    details={"hook": repr(hook)},
                )

    def update_vendor(self) -> None:
        """Install dependencies in every configured root path."""
        if not self.config.composer_root_paths:
            return

        options = self.config.option_items()
        if NO_INTERACTION_OPTION not in options and f"--{NO_INTERACTION_OPTION}" not in options:
            options.append(NO_INTERACTION_OPTION)
        option_string = build_option_string(options)

        for root_path in self.config.composer_root_paths:
            self.exec_shell_command(
                f"(cd {{path}}; {{composer}} install {option_string})",
                {"{path}": root_path, "{composer}": self.config.composer_bin_path},
            )
        self.log("Dependencies updated.")

    def flush_cache(self) -> None:
        """Flush every configured cache."""
        for cache in self.caches:
            cache.flush()
            self.log(f"Cache '{cache.name}' flushed.")

    def clear_tmp_directories(self) -> None:
        """Clear every configured temporary directory."""
        for directory in self.config.tmp_directories:
            path = Path(directory)
            if not path.is_dir():
                self.log(f"Directory '{path}' does not exist, skipped.")
                continue
            clear_directory(path)
            self.log(f"Directory '{path}' cleared.")

    def exec_shell_command(
        self,
        template: str,
        placeholders: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """
        Execute a shell command, treating error output as failure.

        Args:
            template: Command template.
            placeholders: Placeholder values, shell-quoted on substitution.

        Returns:
            The successful CommandResult.

        Raises:
            CommandExecutionError: If the command exits with a non-zero code or
                its output contains one of the configured error keywords.
        """
        result = self.runner.execute(template, placeholders)
        self.log(str(result))
        details = {"command": result.command, "exit_code": result.exit_code}

        if not result.is_ok():
            raise CommandExecutionError(
                f"Execution of '{result.command}' failed: exit code = "
                f"'{result.exit_code}':\nOutput:\n{result.output}",
                details=details,
            )

        for keyword in self.config.shell_response_error_keywords:
            if result.output_contains(keyword):
                raise CommandExecutionError(
                    f"Execution of '{result.command}' failed! Output contains "
                    f"'{keyword}':\nOutput:\n{result.output}",
                    details={**details, "keyword": keyword},
                )

        return result
