"""Settings for the git config supervisor.

Settings come from a TOML file (a ``[git_config]`` table, or the top level)
and are overridden by explicit keyword values such as CLI flags.
"""

import logging
from pathlib import Path
from typing import Any, Final

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR: Final = Path("/tmp/gitreload")
DEFAULT_POLL_INTERVAL: Final = 60
SECTION_NAME: Final = "git_config"


class ConfigError(Exception):
    """Raised when settings cannot be loaded or are invalid."""

    pass


class GitConfigSettings(BaseModel):
    """Supervisor settings."""

    repo: str = Field(min_length=1, description="Git repository URL (HTTPS, SSH, file:// or path)")
    ref: str = Field(default="main", min_length=1, description="Branch, tag or commit sha")
    path: str = Field(min_length=1, description="Configuration file path within the repository")
    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR, description="Base directory for clone and artifacts")
    poll_interval: int = Field(default=DEFAULT_POLL_INTERVAL, description="Polling interval in seconds")
    extension: str = "yaml"
    header_source: Path | None = None
    clear_current_on_stage: bool = True
    reload_command: str | None = None

    @field_validator("poll_interval", mode="before")
    @classmethod
    def _default_non_positive_interval(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_POLL_INTERVAL
        try:
            if int(value) <= 0:
                return DEFAULT_POLL_INTERVAL
        except (TypeError, ValueError):
            return value
        return value

    @field_validator("extension")
    @classmethod
    def _strip_extension_dot(cls, value: str) -> str:
        value = value.lstrip(".")
        if not value:
            raise ValueError("extension must not be empty")
        return value

    @property
    def repo_path(self) -> Path:
        """Local clone directory: ``{config_dir}/repo``."""
        return self.config_dir / "repo"

    @property
    def configs_path(self) -> Path:
        """Rendered artifacts and slot pointers: ``{config_dir}/configs``."""
        return self.config_dir / "configs"


def read_settings_file(path: Path) -> dict[str, Any]:
    """Read the raw settings table from a TOML file.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        data = tomli.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read settings file {path}: {e}") from e
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    section = data.get(SECTION_NAME, data)
    if not isinstance(section, dict):
        raise ConfigError(f"[{SECTION_NAME}] in {path} must be a table")
    return section


def load_settings(path: Path | None = None, /, **overrides: Any) -> GitConfigSettings:
    """Load settings from an optional TOML file plus overrides.

    Overrides whose value is None are ignored so unset CLI flags do not
    clobber file values.

    Raises:
        ConfigError: If required settings are missing or invalid.
    """
    values: dict[str, Any] = read_settings_file(path) if path else {}
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        settings = GitConfigSettings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid settings: {problems}") from e

    logger.debug(f"Loaded settings (config_dir={settings.config_dir}, poll_interval={settings.poll_interval}s)")
    return settings
