"""Configuration for agkit.

This module resolves everything that depends on the machine agkit runs on:
- User and project-level YAML configuration files
- Environment variable overrides
- The global store, the local ``.agent`` folder and the temp root

All of it is resolved once into a :class:`SyncContext` which the rest of the
package receives explicitly. Nothing outside this module reads the home
directory, the working directory or the environment.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from agkit.errors import AgkitError


# =============================================================================
# Constants
# =============================================================================

AGENT_FOLDER = ".agent"
DEFAULT_STORE_NAME = ".antigravity"

USER_CONFIG_DIR_PARTS = (".config", "agkit")
USER_CONFIG_FILE_NAME = "config.yml"
PROJECT_CONFIG_FILE_NAME = ".agkit.yml"

# Environment variable prefix
ENV_PREFIX = "AGKIT_"

PACKAGED_RULES_ASSET = Path(__file__).parent / "assets" / "GEMINI.md"

DEFAULT_KITS = [
    "github:anthonylee991/gemini-superpowers",
    "github:sickn33/antigravity-awesome-skills",
    "github:Academico-JZ/ag-jz-personal-kit",
]

DEFAULT_FETCH_TIMEOUT = 60.0

TRUE_WORDS = ("true", "1", "yes")
FALSE_WORDS = ("false", "0", "no")


class ConfigError(AgkitError):
    """Raised when configuration is invalid."""

    pass


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    word = str(value).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class AgkitConfig:
    """Main agkit configuration.

    Attributes:
        store_dir: Global store directory (default: ~/.antigravity)
        default_kits: Kit sources synced by ``sync --all``
        fetch_timeout: Network timeout in seconds for kit downloads
        auth_token: Bearer token sent to the archive host
        rules_asset: Canonical rules file (default: packaged GEMINI.md)
        keep_downloads: Keep temporary download directories after sync
        log_level: Logging level
    """

    store_dir: Optional[str] = None
    default_kits: list[str] = field(default_factory=lambda: list(DEFAULT_KITS))
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    auth_token: Optional[str] = None
    rules_asset: Optional[str] = None
    keep_downloads: bool = False
    log_level: LogLevel = LogLevel.WARNING

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding secrets)."""
        return {
            "store_dir": self.store_dir,
            "default_kits": list(self.default_kits),
            "fetch_timeout": self.fetch_timeout,
            "rules_asset": self.rules_asset,
            "keep_downloads": self.keep_downloads,
            "log_level": self.log_level.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgkitConfig:
        """Create from dictionary.

        Raises:
            ConfigError: If a value has the wrong type or is unknown
        """
        log_level = data.get("log_level") or "warning"
        try:
            level = LogLevel(str(log_level).lower())
        except ValueError:
            choices = ", ".join(l.value for l in LogLevel)
            raise ConfigError(f"Unknown log_level '{log_level}' (expected one of: {choices})")

        timeout = data.get("fetch_timeout", DEFAULT_FETCH_TIMEOUT)
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"fetch_timeout must be a number, got {timeout!r}")

        kits = data.get("default_kits")
        if kits is None:
            kits = list(DEFAULT_KITS)
        elif isinstance(kits, str):
            kits = [k.strip() for k in kits.split(",") if k.strip()]
        elif not isinstance(kits, list):
            raise ConfigError("default_kits must be a list of kit sources")

        return cls(
            store_dir=data.get("store_dir"),
            default_kits=[str(k) for k in kits],
            fetch_timeout=timeout,
            auth_token=data.get("auth_token"),
            rules_asset=data.get("rules_asset"),
            keep_downloads=_parse_bool("keep_downloads", data.get("keep_downloads", False)),
            log_level=level,
        )

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(
            self.to_dict(),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )


@dataclass(frozen=True)
class SyncContext:
    """Everything an agkit operation needs to know about its environment.

    Attributes:
        cwd: Working directory the command was invoked from
        home: Home directory used for default paths
        config: Resolved configuration
    """

    cwd: Path
    home: Path
    config: AgkitConfig

    @property
    def store_dir(self) -> Path:
        """Global kit store."""
        if self.config.store_dir:
            return Path(self.config.store_dir).expanduser()
        return self.home / DEFAULT_STORE_NAME

    @property
    def local_agent_dir(self) -> Path:
        """The ``.agent`` folder of the current workspace."""
        return self.cwd / AGENT_FOLDER

    @property
    def rules_asset(self) -> Path:
        """Canonical rules file copied by the rule enforcer."""
        if self.config.rules_asset:
            return Path(self.config.rules_asset).expanduser()
        return PACKAGED_RULES_ASSET

    @property
    def temp_root(self) -> Path:
        """Parent directory for kit downloads."""
        return Path(tempfile.gettempdir())


# =============================================================================
# Configuration Loading
# =============================================================================


def get_user_config_path(home: Path) -> Path:
    """Get the path to the user config file."""
    return home.joinpath(*USER_CONFIG_DIR_PARTS) / USER_CONFIG_FILE_NAME


def get_project_config_path(cwd: Path) -> Path:
    """Get the path to the project config file."""
    return cwd / PROJECT_CONFIG_FILE_NAME


def load_config_file(path: Path) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary (empty if the file does not exist)

    Raises:
        ConfigError: If file cannot be loaded
    """
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a YAML mapping")
    return data


def load_env_overrides(environ: Mapping[str, str]) -> dict:
    """Load configuration overrides from environment variables.

    Variables with the AGKIT_ prefix are converted to config keys, so
    AGKIT_STORE_DIR becomes store_dir.

    Returns:
        Dictionary of environment overrides
    """
    overrides: dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        config_key = key[len(ENV_PREFIX):].lower()

        if value.lower() in TRUE_WORDS:
            overrides[config_key] = True
        elif value.lower() in FALSE_WORDS:
            overrides[config_key] = False
        else:
            overrides[config_key] = value

    return overrides


def merge_configs(*configs: dict) -> dict:
    """Merge configuration dictionaries; later ones win, nested dicts merge."""
    result: dict = {}

    for config in configs:
        for key, value in config.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = merge_configs(result[key], value)
            else:
                result[key] = value

    return result


def load_config(
    cwd: Path,
    home: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> AgkitConfig:
    """Load the agkit configuration.

    Precedence, highest first:
    1. Environment variables (AGKIT_*)
    2. Project config (./.agkit.yml)
    3. User config (~/.config/agkit/config.yml)
    4. Defaults

    Raises:
        ConfigError: If a file is unreadable or a value is invalid
    """
    user_config = load_config_file(get_user_config_path(home))
    project_config = load_config_file(get_project_config_path(cwd))
    env_overrides = load_env_overrides(environ if environ is not None else {})

    merged = merge_configs(user_config, project_config, env_overrides)
    return AgkitConfig.from_dict(merged)


def resolve_context(
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncContext:
    """Resolve the process-wide context once, at startup.

    Args:
        cwd: Working directory (default: os.getcwd())
        home: Home directory (default: Path.home())
        environ: Environment mapping (default: os.environ)

    Returns:
        SyncContext passed to every agkit operation
    """
    cwd = Path(cwd) if cwd is not None else Path(os.getcwd())
    home = Path(home) if home is not None else Path.home()
    environ = environ if environ is not None else os.environ

    config = load_config(cwd, home, environ)
    return SyncContext(cwd=cwd, home=home, config=config)


# =============================================================================
# Configuration Validation
# =============================================================================


def validate_config(context: SyncContext) -> list[str]:
    """Validate a resolved context.

    Returns:
        List of validation problems (empty if valid)
    """
    errors = []

    if context.config.fetch_timeout <= 0:
        errors.append("fetch_timeout must be greater than zero")

    if not context.config.default_kits:
        errors.append("default_kits is empty; 'sync --all' will do nothing")

    if not context.rules_asset.is_file():
        errors.append(f"Rules asset not found: {context.rules_asset}")

    if context.store_dir.exists() and not context.store_dir.is_dir():
        errors.append(f"Store path is not a directory: {context.store_dir}")

    return errors
