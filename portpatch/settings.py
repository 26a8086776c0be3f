"""TOML settings loader.

Loads tool defaults from the packaged ``config/defaults.toml`` or from the
file named by ``PORTPATCH_CONFIG``. CLI flags override these values.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from portpatch.schemas.job import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_CATEGORY,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_PORTS_DIR,
)

# Default config directory relative to the portpatch package
_CONFIG_DIR = Path(__file__).parent / "config"

CONFIG_ENV = "PORTPATCH_CONFIG"
DEFAULT_LOG_FILE = Path("/var/log/port_patcher.log")


class Settings(BaseModel):
    """Tool-wide defaults for patch jobs."""

    ports_dir: Path = Field(default=DEFAULT_PORTS_DIR, description="Ports tree root")
    backup_dir: Path = Field(default=DEFAULT_BACKUP_DIR, description="Snapshot root")
    category: str = Field(default=DEFAULT_CATEGORY, description="Port category")
    log_file: Path = Field(default=DEFAULT_LOG_FILE, description="Detailed log file")
    make_program: str = Field(default="make", description="Build orchestration tool")
    patch_program: str = Field(default="patch", description="Patch utility")
    strip_level: int = Field(default=1, ge=0, description="patch -p level")
    command_timeout: float = Field(
        default=DEFAULT_COMMAND_TIMEOUT,
        ge=0,
        description="Seconds per external command (0 waits forever)",
    )

    @property
    def timeout_or_none(self) -> float | None:
        return self.command_timeout or None


def default_config_path() -> Path:
    """Config file to use when none is given explicitly."""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return _CONFIG_DIR / "defaults.toml"


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from a TOML file.

    Args:
        config_path: Path to the TOML file. Defaults to ``$PORTPATCH_CONFIG``
            or the packaged defaults.toml.

    Returns:
        Settings populated from the ``[portpatch]`` table.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the file is not valid TOML or the table is malformed.
    """
    path = config_path or default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    section = raw.get("portpatch", {})
    if not isinstance(section, dict):
        raise ValueError(f"[portpatch] in {path} must be a table")

    try:
        return Settings(**section)
    except ValidationError as e:
        raise ValueError(f"Invalid settings in {path}: {e}") from e
