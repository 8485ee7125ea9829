"""
Configuration management for the self-update tool.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (``selfupdate perform <path>``)
3. Environment variables (SELFUPDATE_* prefix, __ for nesting)

Keys may be written in snake_case or in the camelCase used by the
configuration template (``projectRootPath``, ``webPaths`` ...).
Relative paths are resolved against the directory of the config file.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ENV_PREFIX = "SELFUPDATE_"

DEFAULT_ERROR_KEYWORDS = ["error", "exception", "ошибка"]


class _ConfigModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(_ConfigModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON lines instead of plain text.
    """

    level: str = Field(default="info", description="Log level")
    json_format: bool = Field(
        default=False,
        description="Emit JSON-formatted log lines",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Web Paths
# =============================================================================


class WebPathConfig(_ConfigModel):
    """A web root served through a symbolic link.

    Attributes:
        path: Live web root directory.
        link: Symbolic link the web server serves from.
        stub: Maintenance stub directory served during updates.
    """

    path: str = Field(..., description="Live web root directory")
    link: str = Field(..., description="Symbolic link served by the web server")
    stub: str = Field(..., description="Maintenance stub directory")


# =============================================================================
# Version Control Systems
# =============================================================================


class GitConfig(_ConfigModel):
    """Git backend configuration."""

    kind: Literal["git"] = "git"
    bin_path: str = Field(default="git", description="Path to the git binary")
    remote_name: str = Field(
        default="origin",
        description="Remote used to look for changes",
    )


class MercurialConfig(_ConfigModel):
    """Mercurial backend configuration."""

    kind: Literal["hg"] = "hg"
    bin_path: str = Field(default="hg", description="Path to the hg binary")


VcsConfig = Annotated[GitConfig | MercurialConfig, Field(discriminator="kind")]


def _default_version_control_systems() -> dict[str, GitConfig | MercurialConfig]:
    return {".git": GitConfig(), ".hg": MercurialConfig()}


# =============================================================================
# Collaborators
# =============================================================================


class SmtpConfig(_ConfigModel):
    """SMTP transport used to send run reports.

    Attributes:
        host: SMTP server host.
        port: SMTP server port.
        username: Optional login user.
        password: Optional login password.
        use_tls: Upgrade the connection with STARTTLS.
        timeout: Connection timeout in seconds.
    """

    host: str = Field(default="localhost", description="SMTP server host")
    port: int = Field(default=25, ge=1, le=65535, description="SMTP server port")
    username: str | None = Field(default=None, description="SMTP login user")
    password: str | None = Field(default=None, description="SMTP login password")
    use_tls: bool = Field(default=False, description="Use STARTTLS")
    timeout: float = Field(default=30.0, gt=0, description="Connection timeout")


class MutexConfig(_ConfigModel):
    """Host-local mutex configuration.

    Attributes:
        directory: Directory holding the lock files.
    """

    directory: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "selfupdate"),
        description="Directory holding mutex lock files",
    )


class DirectoryCacheConfig(_ConfigModel):
    """File cache flushed by removing the contents of a directory."""

    kind: Literal["directory"] = "directory"
    path: str = Field(..., description="Cache directory")


class CommandCacheConfig(_ConfigModel):
    """Cache flushed by running a shell command."""

    kind: Literal["command"] = "command"
    command: str = Field(..., description="Shell command flushing the cache")


CacheConfig = Annotated[
    DirectoryCacheConfig | CommandCacheConfig, Field(discriminator="kind")
]


# =============================================================================
# Main Configuration
# =============================================================================


class SelfUpdateConfig(_ConfigModel):
    """
    Main self-update configuration model.

    Attributes:
        emails: Report recipients. No email is sent when empty.
        mailer: SMTP transport settings; the sendmail fallback is used when unset.
        mutex: Host-local mutex settings.
        cache: Caches flushed after the update.
        project_root_path: VCS root directory of the project.
        web_paths: Web roots switched to a stub during the update.
        tmp_directories: Directories cleared after the update.
        before_update_commands: Hooks run before remote changes are applied.
        after_update_commands: Hooks run after the update.
        shell_response_error_keywords: Output keywords treated as command failure.
        version_control_systems: Ordered marker -> backend mapping.
        composer_bin_path: Dependency installer binary.
        composer_root_paths: Directories where dependencies are installed.
        composer_options: Options passed to the dependency installer.
        logging: Logging configuration.
    """

    emails: list[str] = Field(
        default_factory=list,
        description="Email addresses receiving execution reports",
    )
    mailer: SmtpConfig | None = Field(
        default=None,
        description="SMTP transport; sendmail is used when unset",
    )
    mutex: MutexConfig = Field(
        default_factory=MutexConfig,
        description="Host-local mutex settings",
    )
    cache: list[CacheConfig] = Field(
        default_factory=list,
        description="Caches to be flushed after the update",
    )
    project_root_path: str = Field(
        default=".",
        description="Path to the project root (VCS root) directory",
    )
    web_paths: list[WebPathConfig] = Field(
        default_factory=list,
        description="Web path stubs configuration",
    )
    tmp_directories: list[str] = Field(
        default_factory=list,
        description="Temporary directories cleared after the update",
    )
    before_update_commands: list[Any] = Field(
        default_factory=list,
        description="Shell commands or callables run before the update",
    )
    after_update_commands: list[Any] = Field(
        default_factory=list,
        description="Shell commands or callables run after the update",
    )
    shell_response_error_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ERROR_KEYWORDS),
        description="Keywords whose presence in command output means failure",
    )
    version_control_systems: dict[str, VcsConfig] = Field(
        default_factory=_default_version_control_systems,
        description="Marker entry to version control backend, in priority order",
    )
    composer_bin_path: str = Field(
        default="composer",
        description="Dependency installer binary",
    )
    composer_root_paths: list[str] = Field(
        default_factory=list,
        description="Directories where dependencies are installed",
    )
    composer_options: list[str | dict[str, str]] = Field(
        default_factory=lambda: ["prefer-dist", "no-dev", "optimize-autoloader"],
        description="Dependency installer options: flag names or {name: value}",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @field_validator("emails", mode="before")
    @classmethod
    def validate_emails(cls, v: Any) -> Any:
        """Accept a single address as well as a list."""
        if isinstance(v, str):
            return [v]
        return v

    def option_items(self) -> list[str | tuple[str, str]]:
        """Dependency installer options as flag names and (name, value) pairs."""
        items: list[str | tuple[str, str]] = []
        for option in self.composer_options:
            if isinstance(option, str):
                items.append(option)
            else:
                items.extend(option.items())
        return items

    def resolve_paths(self, base_dir: Path) -> SelfUpdateConfig:
        """
        Return a copy with relative paths made absolute.

        Args:
            base_dir: Directory that relative paths are relative to.

        Returns:
            New configuration with absolute paths.
        """

        def _abs(value: str) -> str:
            path = Path(value).expanduser()
            if not path.is_absolute():
                path = base_dir / path
            return os.path.normpath(path)

        return self.model_copy(
            update={
                "project_root_path": _abs(self.project_root_path),
                "web_paths": [
                    WebPathConfig(
                        path=_abs(p.path), link=_abs(p.link), stub=_abs(p.stub)
                    )
                    for p in self.web_paths
                ],
                "tmp_directories": [_abs(p) for p in self.tmp_directories],
                "composer_root_paths": [_abs(p) for p in self.composer_root_paths],
                "cache": [
                    DirectoryCacheConfig(path=_abs(c.path))
                    if isinstance(c, DirectoryCacheConfig)
                    else c
                    for c in self.cache
                ],
                "mutex": MutexConfig(directory=_abs(self.mutex.directory)),
            }
        )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    # Comma-separated lists, e.g. SELFUPDATE_EMAILS=a@x.com,b@x.com
    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Environment variables are parsed with the following rules:
    - Prefix: SELFUPDATE_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: SELFUPDATE_LOGGING__LEVEL=debug

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> SelfUpdateConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. Relative paths inside
            the file are resolved against its directory.
        env_prefix: Prefix for environment variables.
        overrides: Values applied on top of every other source.

    Returns:
        Validated SelfUpdateConfig with absolute paths.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValidationError: If configuration is invalid.
    """
    config_dict: dict[str, Any] = {}
    base_dir = Path.cwd()

    if config_path is not None:
        config_path = Path(config_path)
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))
        base_dir = config_path.resolve().parent

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    return SelfUpdateConfig.model_validate(config_dict).resolve_paths(base_dir)


# =============================================================================
# Configuration Template
# =============================================================================

CONFIG_TEMPLATE = """\
# Configuration file for the self-update command.
#
# Run the update with:  selfupdate perform /path/to/this/file.yml
# Relative paths are resolved against the directory of this file.

# list of email addresses, which should be used to send execution reports
emails: []
#  - developer@example.com

# SMTP server used to send reports; local sendmail is used when omitted
mailer: null
#  host: localhost
#  port: 25

# directory for the lock files preventing concurrent runs
#mutex:
#  directory: /var/lock/selfupdate

# path to project root directory (VCS root directory)
projectRootPath: .

# web path stubs configuration
webPaths:
  - path: web
    link: httpdocs
    stub: webstub

# caches to be flushed after project update
cache: []
#  - kind: directory
#    path: runtime/cache
#  - kind: command
#    command: php yii cache/flush-all --interactive=0

# temporary directories, which should be cleared after project update
tmpDirectories:
  - web/assets
  - runtime/debug

# list of shell commands, which should be executed before project update begins
beforeUpdateCommands: []

# list of shell commands, which should be executed after project update
afterUpdateCommands: []
#  - php yii migrate/up --interactive=0

# adjust Composer settings, if necessary
#composerBinPath: composer
#composerRootPaths:
#  - .
#composerOptions:
#  - prefer-dist
#  - no-dev
#  - optimize-autoloader
"""


def write_config_template(path: Path | str, *, overwrite: bool = False) -> Path:
    """
    Write the configuration template to ``path``.

    Args:
        path: Destination file.
        overwrite: Replace an existing file.

    Returns:
        The written path.

    Raises:
        FileExistsError: If the file exists and ``overwrite`` is False.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"Configuration file already exists: {path}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    return path
