"""
Tests for update orchestration.

Tests cover:
- Up-to-date runs touching nothing
- The full update sequence and its ordering
- Failures stopping the sequence and leaving web roots on the stub
- Lock contention
- Hooks (shell commands and callables)
- Error keyword detection in command output
- State machine transitions
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest import mock

import pytest

from selfupdate.config import SelfUpdateConfig
from selfupdate.errors import CommandExecutionError, SelfUpdateError
from selfupdate.mutex import FileMutex
from selfupdate.orchestrator import (
    EXIT_CODE_ERROR,
    EXIT_CODE_NORMAL,
    SelfUpdater,
    UpdateOutcome,
    UpdateState,
)
from selfupdate.report import ReportMessage, Reporter

if TYPE_CHECKING:
    from conftest import FakeRunner, WebLayout


# =============================================================================
# Fakes and Fixtures
# =============================================================================


class MemoryMutex:
    """In-process mutex recording acquire/release calls."""

    def __init__(self) -> None:
        self.held: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def acquire(self, name: str) -> bool:
        self.calls.append(("acquire", name))
        if name in self.held:
            return False
        self.held.add(name)
        return True

    def release(self, name: str) -> bool:
        self.calls.append(("release", name))
        if name not in self.held:
            return False
        self.held.remove(name)
        return True


class RecordingMailer:
    """Mailer keeping sent messages in memory."""

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[ReportMessage] = []
        self.error = error

    def send(self, message: ReportMessage) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(message)


class RecordingCache:
    """Cache recording flushes."""

    def __init__(self, name: str = "memory", error: Exception | None = None) -> None:
        self.name = name
        self.flushed = 0
        self.error = error

    def flush(self) -> None:
        if self.error is not None:
            raise self.error
        self.flushed += 1


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A Git working copy marker directory."""
    root = tmp_path / "project"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def mutex() -> MemoryMutex:
    return MemoryMutex()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def remote_changes(fake_runner: FakeRunner) -> FakeRunner:
    """Runner reporting one changed file on the remote branch."""
    fake_runner.on(" branch", 0, "* main")
    fake_runner.on(" diff ", 0, "1\t0\tsrc/app.php")
    return fake_runner


def _config(project_root: Path, web_layout: WebLayout, **values: Any) -> SelfUpdateConfig:
    data: dict[str, Any] = {
        "emails": ["dev@example.com"],
        "project_root_path": str(project_root),
        "web_paths": [
            {
                "path": str(web_layout.live),
                "link": str(web_layout.link),
                "stub": str(web_layout.stub),
            }
        ],
        "composer_root_paths": [str(project_root)],
    }
    data.update(values)
    return SelfUpdateConfig.model_validate(data)


def _updater(
    config: SelfUpdateConfig,
    runner: FakeRunner,
    mutex: MemoryMutex,
    mailer: RecordingMailer,
    caches: list[RecordingCache] | None = None,
) -> SelfUpdater:
    reporter = Reporter(
        config.emails,
        mailer=mailer,
        fallback_mailer=RecordingMailer(),
        host_name=lambda: "web01",
        user_name=lambda: "deploy",
    )
    return SelfUpdater(
        config,
        mutex=mutex,
        caches=caches or [],
        runner=runner,
        reporter=reporter,
    )


# =============================================================================
# Up-to-date Runs
# =============================================================================


class TestUpToDate:
    """Tests for runs without remote changes."""

    def test_nothing_touched(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
        cache: RecordingCache,
    ) -> None:
        """Test that no stub swap, install or flush happens."""
        fake_runner.on(" branch", 0, "* main")
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer, [cache])

        result = updater.perform()

        assert result.outcome == UpdateOutcome.UP_TO_DATE
        assert result.exit_code == EXIT_CODE_NORMAL
        assert result.ok
        assert "No changes detected. Project is already up-to-date." in result.log
        assert os.readlink(web_layout.link) == str(web_layout.live)
        assert not fake_runner.ran(" install ")
        assert not fake_runner.ran(" merge ")
        assert cache.flushed == 0
        assert mailer.sent == []
        assert mutex.held == set()
        assert updater.state == UpdateState.LOCK_RELEASED


# =============================================================================
# Successful Updates
# =============================================================================


class TestSuccessfulUpdate:
    """Tests for runs applying remote changes."""

    def test_full_sequence(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
        cache: RecordingCache,
    ) -> None:
        """Test the complete update sequence."""
        seen_links: list[str] = []

        def before_hook(updater: SelfUpdater) -> None:
            seen_links.append(os.readlink(web_layout.link))

        config = _config(
            project_root,
            web_layout,
            before_update_commands=[before_hook],
            after_update_commands=["php yii migrate/up --interactive=0"],
        )
        updater = _updater(config, remote_changes, mutex, mailer, [cache])

        result = updater.perform()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert result.exit_code == EXIT_CODE_NORMAL
        assert seen_links == [str(web_layout.stub)]
        assert os.readlink(web_layout.link) == str(web_layout.live)
        assert cache.flushed == 1
        assert remote_changes.ran("merge 'origin'/'main'")
        assert remote_changes.ran(
            f"(cd '{project_root}'; 'composer' install --prefer-dist --no-dev "
            "--optimize-autoloader --no-interaction)"
        )
        assert remote_changes.commands[-1] == "php yii migrate/up --interactive=0"
        assert mutex.held == set()

    def test_log_order(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that run log milestones appear in sequence order."""
        config = _config(project_root, web_layout)
        result = _updater(config, remote_changes, mutex, mailer).perform()

        milestones = [
            "Checking for updates...",
            "Remote changes detected.",
            "Link to web stubs created.",
            "Remote changes applied.",
            "Dependencies updated.",
            "Links to web directories restored.",
        ]
        positions = [result.log.index(m) for m in milestones]
        assert positions == sorted(positions)

    def test_success_report_sent(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that the success report contains the run log."""
        config = _config(project_root, web_layout)
        _updater(config, remote_changes, mutex, mailer).perform()

        assert len(mailer.sent) == 1
        message = mailer.sent[0]
        assert message.subject.startswith("Update success: web01 at ")
        assert message.to_addresses == ["dev@example.com"]
        assert "Remote changes applied." in message.body

    def test_no_dependency_roots(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that dependency installation is skipped without root paths."""
        config = _config(project_root, web_layout, composer_root_paths=[])
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert not remote_changes.ran(" install ")

    def test_custom_installer_options(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test custom installer binary and options."""
        config = _config(
            project_root,
            web_layout,
            composer_bin_path="/usr/local/bin/composer.phar",
            composer_options=["no-dev", {"working-dir": "app dir"}, "no-interaction"],
        )
        _updater(config, remote_changes, mutex, mailer).perform()

        assert remote_changes.ran(
            "'/usr/local/bin/composer.phar' install --no-dev "
            "--working-dir='app dir' --no-interaction)"
        )

    def test_temporary_directories(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test clearing temporary directories and skipping missing ones."""
        assets = web_layout.live / "assets"
        (assets / "3f2a1b").mkdir(parents=True)
        (assets / "3f2a1b" / "app.js").write_text("x")
        (assets / ".gitignore").write_text("*\n")
        missing = project_root / "runtime" / "debug"

        config = _config(
            project_root, web_layout, tmp_directories=[str(assets), str(missing)]
        )
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert [p.name for p in assets.iterdir()] == [".gitignore"]
        assert f"Directory '{assets}' cleared." in result.log
        assert f"Directory '{missing}' does not exist, skipped." in result.log

    def test_report_failure_does_not_fail_run(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
    ) -> None:
        """Test that an undeliverable report leaves the outcome unchanged."""
        config = _config(project_root, web_layout)
        updater = SelfUpdater(
            config,
            mutex=mutex,
            caches=[],
            runner=remote_changes,
            mailer=RecordingMailer(error=ConnectionRefusedError("refused")),
            fallback_mailer=RecordingMailer(error=OSError("no sendmail")),
        )

        result = updater.perform()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert mutex.held == set()


# =============================================================================
# Failed Updates
# =============================================================================


class TestFailedUpdate:
    """Tests for runs stopping at a failing step."""

    def test_failing_install_leaves_stub(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
        cache: RecordingCache,
    ) -> None:
        """Test that a failed install stops the run with the stub linked."""
        remote_changes.on(" install ", 2, "Your requirements could not be resolved")
        config = _config(
            project_root, web_layout, after_update_commands=["php yii migrate/up"]
        )
        updater = _updater(config, remote_changes, mutex, mailer, [cache])

        result = updater.perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.exit_code == EXIT_CODE_ERROR
        assert not result.ok
        assert "exit code = '2'" in result.message
        assert os.readlink(web_layout.link) == str(web_layout.stub)
        assert cache.flushed == 0
        assert not remote_changes.ran("migrate")
        assert mutex.held == set()
        assert updater.state == UpdateState.LOCK_RELEASED

    def test_failure_report_sent(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that the failure report contains the error message."""
        remote_changes.on(" install ", 1, "Could not find package")
        config = _config(project_root, web_layout)
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert len(mailer.sent) == 1
        message = mailer.sent[0]
        assert message.subject.startswith("UPDATE FAILED: web01 at ")
        assert result.message in message.body
        assert result.log[-1] == result.message

    def test_merge_failure(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a failed merge stops before dependency installation."""
        remote_changes.on(" merge ", 1, "CONFLICT (content): Merge conflict")
        config = _config(project_root, web_layout)
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.message == "Unable to apply remote changes."
        assert not remote_changes.ran(" install ")
        assert os.readlink(web_layout.link) == str(web_layout.stub)

    def test_error_keyword_in_output(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a zero exit code with error output still fails."""
        remote_changes.on("migrate", 0, "PHP Fatal ERROR: table exists")
        config = _config(
            project_root, web_layout, after_update_commands=["php yii migrate/up"]
        )
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "Output contains 'error'" in result.message

    def test_cache_flush_failure(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a failing cache stops the run."""
        failing = RecordingCache(
            "redis-cli FLUSHDB", error=CommandExecutionError("Unable to flush cache")
        )
        config = _config(project_root, web_layout)
        result = _updater(config, remote_changes, mutex, mailer, [failing]).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.message == "Unable to flush cache"

    def test_unexpected_exception(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that non-SelfUpdateError exceptions are also caught."""
        failing = RecordingCache(error=PermissionError("Permission denied"))
        config = _config(project_root, web_layout)
        result = _updater(config, remote_changes, mutex, mailer, [failing]).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.message == "Permission denied"
        assert mutex.held == set()

    def test_missing_vcs(
        self,
        fake_runner: FakeRunner,
        tmp_path: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that an undetectable VCS fails before running commands."""
        root = tmp_path / "plain"
        root.mkdir()
        config = _config(root, web_layout)
        result = _updater(config, fake_runner, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "Unable to detect version control system" in result.message
        assert fake_runner.commands == []
        assert os.readlink(web_layout.link) == str(web_layout.live)
        assert mutex.held == set()

    def test_invalid_web_path(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that an invalid web path mapping fails before running commands."""
        web_layout.link.unlink()
        web_layout.link.mkdir()
        config = _config(project_root, web_layout)
        result = _updater(config, fake_runner, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "is not a symbolic link" in result.message
        assert fake_runner.commands == []

    def test_missing_project_root(
        self,
        fake_runner: FakeRunner,
        tmp_path: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a missing project root fails."""
        config = _config(tmp_path / "missing", web_layout)
        result = _updater(config, fake_runner, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "is not a directory" in result.message

    def test_vcs_check_failure(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a failing remote check is reported as a failure."""
        fake_runner.on(" branch", 0, "* main")
        fake_runner.on(" fetch ", 128, "fatal: could not read from remote")
        config = _config(project_root, web_layout)
        result = _updater(config, fake_runner, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert os.readlink(web_layout.link) == str(web_layout.live)


# =============================================================================
# Lock Contention
# =============================================================================


class TestLockContention:
    """Tests for concurrent runs."""

    def test_second_run_refused(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a held mutex terminates the run without any step."""
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer)
        mutex.held.add(updater.mutex_name)

        result = updater.perform()

        assert result.outcome == UpdateOutcome.LOCKED
        assert result.exit_code == EXIT_CODE_ERROR
        assert result.message == "Execution terminated: command is already running."
        assert fake_runner.commands == []
        assert mailer.sent == []
        assert mutex.held == {updater.mutex_name}
        assert ("release", updater.mutex_name) not in mutex.calls

    def test_mutex_name(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that the mutex name identifies the action."""
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer)

        assert updater.mutex_name == "selfupdate.orchestrator.SelfUpdater::perform"

    def test_unusable_lock_directory_fails_run(
        self,
        tmp_path: Path,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a lock directory below a regular file fails the run."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, MemoryMutex(), mailer)
        updater.mutex = FileMutex(blocker / "locks")

        result = updater.perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.exit_code == EXIT_CODE_ERROR
        assert "Failed to create directory" in result.message
        assert fake_runner.commands == []
        assert len(mailer.sent) == 1
        assert mailer.sent[0].subject.startswith("UPDATE FAILED")
        assert os.readlink(web_layout.link) == str(web_layout.live)

    def test_unopenable_lock_file_fails_run(
        self,
        tmp_path: Path,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a lock file that cannot be opened fails the run."""
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, MemoryMutex(), mailer)
        file_mutex = FileMutex(tmp_path / "locks")
        file_mutex.lock_file_path(updater.mutex_name).mkdir(parents=True)
        updater.mutex = file_mutex

        result = updater.perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.exit_code == EXIT_CODE_ERROR
        assert "Unable to open lock file" in result.message
        assert fake_runner.commands == []

    def test_run_possible_after_lock_failure(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a failed acquisition leaves the updater reusable."""
        fake_runner.on(" branch", 0, "* main")
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer)
        mutex.acquire = mock.Mock(side_effect=PermissionError("Permission denied"))

        first = updater.perform()
        del mutex.acquire
        second = updater.perform()

        assert first.outcome == UpdateOutcome.FAILED
        assert first.message == "Permission denied"
        assert second.outcome == UpdateOutcome.UP_TO_DATE
        assert mutex.held == set()


# =============================================================================
# Hooks
# =============================================================================


class TestHooks:
    """Tests for before/after update hooks."""

    def test_hook_returning_false_fails(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a callable returning False aborts the run."""

        def check_disk_space(updater: SelfUpdater) -> bool:
            return False

        config = _config(
            project_root, web_layout, before_update_commands=[check_disk_space]
        )
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "check_disk_space" in result.message
        assert not remote_changes.ran(" merge ")

    def test_hook_receives_updater(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that callable hooks can use the updater's command execution."""

        def warm_up(updater: SelfUpdater) -> None:
            updater.exec_shell_command("curl -s {url}", {"{url}": "http://localhost/"})

        config = _config(project_root, web_layout, after_update_commands=[warm_up])
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert remote_changes.ran("curl -s 'http://localhost/'")

    def test_invalid_hook_type(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a hook that is neither a string nor callable fails."""
        config = _config(project_root, web_layout, before_update_commands=[42])
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert "int given" in result.message

    def test_hooks_stop_at_first_failure(
        self,
        remote_changes: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that later hooks are skipped after a failing one."""
        remote_changes.on("first-hook", 1)
        config = _config(
            project_root,
            web_layout,
            after_update_commands=["first-hook", "second-hook"],
        )
        result = _updater(config, remote_changes, mutex, mailer).perform()

        assert result.outcome == UpdateOutcome.FAILED
        assert remote_changes.ran("first-hook")
        assert not remote_changes.ran("second-hook")


# =============================================================================
# Shell Command Execution
# =============================================================================


class TestExecShellCommand:
    """Tests for SelfUpdater.exec_shell_command."""

    def test_success_is_logged(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that the command result is written to the run log."""
        fake_runner.on("echo", 0, "done")
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer)

        result = updater.exec_shell_command("echo done")

        assert result.output == "done"
        assert updater.reporter.lines == ["echo done\ndone\nExit code: 0"]

    def test_keyword_match_is_case_insensitive(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test keyword matching ignores case."""
        fake_runner.on("migrate", 0, "Uncaught EXCEPTION in migration")
        config = _config(project_root, web_layout)
        updater = _updater(config, fake_runner, mutex, mailer)

        with pytest.raises(CommandExecutionError) as exc_info:
            updater.exec_shell_command("php yii migrate/up")
        assert exc_info.value.details["keyword"] == "exception"

    def test_custom_keywords(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that the keyword list is configurable."""
        fake_runner.on("deploy", 0, "error count: 0")
        config = _config(
            project_root, web_layout, shell_response_error_keywords=["fatal"]
        )
        updater = _updater(config, fake_runner, mutex, mailer)

        assert updater.exec_shell_command("deploy").is_ok()


# =============================================================================
# State Machine
# =============================================================================


class TestStateMachine:
    """Tests for state transitions."""

    def test_initial_state(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that a new updater is idle."""
        updater = _updater(
            _config(project_root, web_layout), fake_runner, mutex, mailer
        )
        assert updater.state == UpdateState.IDLE

    def test_repeated_runs(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that an updater can run again after releasing the lock."""
        fake_runner.on(" branch", 0, "* main")
        updater = _updater(
            _config(project_root, web_layout), fake_runner, mutex, mailer
        )

        assert updater.perform().outcome == UpdateOutcome.UP_TO_DATE
        assert updater.perform().outcome == UpdateOutcome.UP_TO_DATE
        assert updater.state == UpdateState.LOCK_RELEASED

    def test_invalid_transition(
        self,
        fake_runner: FakeRunner,
        project_root: Path,
        web_layout: WebLayout,
        mutex: MemoryMutex,
        mailer: RecordingMailer,
    ) -> None:
        """Test that an invalid transition raises."""
        updater = _updater(
            _config(project_root, web_layout), fake_runner, mutex, mailer
        )

        with pytest.raises(SelfUpdateError, match="Invalid state transition"):
            updater._transition_to(UpdateState.SUCCESS)
