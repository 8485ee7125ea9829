"""
Pytest configuration and shared fixtures for the self-update tests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from selfupdate.shell import CommandResult, substitute_placeholders


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests calling real git/hg binaries",
    )


class FakeRunner:
    """
    Command runner returning scripted results.

    Each rule is a ``(needle, exit_code, output_lines)`` triple; the first rule
    whose needle occurs in the rendered command wins. Unmatched commands
    succeed with no output.
    """

    def __init__(self) -> None:
        self.rules: list[tuple[str, int, tuple[str, ...]]] = []
        self.commands: list[str] = []

    def on(self, needle: str, exit_code: int = 0, *lines: str) -> FakeRunner:
        self.rules.append((needle, exit_code, lines))
        return self

    def execute(
        self,
        template: str,
        placeholders: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        command = substitute_placeholders(template, placeholders or {})
        self.commands.append(command)
        for needle, exit_code, lines in self.rules:
            if needle in command:
                return CommandResult(command, exit_code, lines)
        return CommandResult(command, 0, ())

    def ran(self, needle: str) -> bool:
        return any(needle in command for command in self.commands)


@dataclass
class WebLayout:
    """A live/stub directory pair with a link pointing at the live one."""

    live: Path
    stub: Path
    link: Path


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Scriptable command runner."""
    return FakeRunner()


@pytest.fixture
def web_layout(tmp_path: Path) -> WebLayout:
    """Create web/, webstub/ and httpdocs -> web."""
    live = tmp_path / "web"
    stub = tmp_path / "webstub"
    link = tmp_path / "httpdocs"
    live.mkdir()
    stub.mkdir()
    link.symlink_to(live)
    return WebLayout(live=live, stub=stub, link=link)


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Restore the selfupdate logger after each test."""
    yield
    logger = logging.getLogger("selfupdate")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging.getLogger("selfupdate.runlog").setLevel(logging.NOTSET)
