"""
Command-line interface for the self-update tool.

Commands:
- ``selfupdate config <path>``: write a configuration template
- ``selfupdate perform [config-path]``: run the update
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from selfupdate import __version__
from selfupdate.config import load_config, write_config_template
from selfupdate.logging import get_logger, setup_logging
from selfupdate.orchestrator import EXIT_CODE_ERROR, EXIT_CODE_NORMAL, SelfUpdater

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="selfupdate",
        description="Update a deployed project from its version control remote",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser(
        "config", help="Write a configuration template"
    )
    config_parser.add_argument("path", type=Path, help="Destination file")
    config_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite an existing file without asking",
    )

    perform_parser = subparsers.add_parser("perform", help="Perform the update")
    perform_parser.add_argument(
        "config_path",
        nargs="?",
        type=Path,
        help="Configuration file merged over the defaults",
    )
    perform_parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    perform_parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON-formatted log lines",
    )

    return parser


def _confirm(prompt: str) -> bool:
    if not sys.stdin.isatty():
        return False
    answer = input(f"{prompt} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def command_config(path: Path, *, force: bool = False) -> int:
    """
    Write the configuration template.

    An existing file is only replaced with ``force`` or after confirmation.
    """
    setup_logging()
    if path.exists() and not force:
        if not _confirm(f"File '{path}' already exists. Overwrite?"):
            logger.error(f"Configuration file '{path}' already exists, not overwritten.")
            return EXIT_CODE_ERROR

    write_config_template(path, overwrite=True)
    logger.info(f"Configuration file '{path}' created.")
    return EXIT_CODE_NORMAL


def command_perform(
    config_path: Path | None = None,
    *,
    log_level: str | None = None,
    json_logs: bool = False,
) -> int:
    """Load configuration and run the update."""
    overrides: dict[str, dict[str, object]] = {"logging": {}}
    if log_level:
        overrides["logging"]["level"] = log_level
    if json_logs:
        overrides["logging"]["json_format"] = True

    try:
        config = load_config(config_path, overrides=overrides)
    except (OSError, ValidationError, ValueError, yaml.YAMLError) as e:
        setup_logging()
        logger.error(f"Unable to load configuration: {e}")
        return EXIT_CODE_ERROR

    setup_logging(config.logging)
    return SelfUpdater(config).perform().exit_code


def main(argv: list[str] | None = None) -> int:
    """Entry point of the ``selfupdate`` console script."""
    args = build_parser().parse_args(argv)

    if args.command == "config":
        return command_config(args.path, force=args.force)
    return command_perform(
        args.config_path, log_level=args.log_level, json_logs=args.json_logs
    )


if __name__ == "__main__":
    sys.exit(main())
