"""Application settings read from the environment."""

import re
import shlex
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zfs_zap import __version__


class Settings(BaseSettings):
    """zap settings.

    zap has no configuration file. Everything here comes from ``ZAP_*``
    environment variables so that a cron entry can carry it.
    """

    # Application
    app_name: str = Field(default="zap", description="Application name")
    app_version: str = Field(default=__version__, description="Application version")
    log_level: str = Field(default="WARNING", description="Logging level when not verbose")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating log file")
    log_max_bytes: int = Field(default=1048576, description="Rotate the log file at this size")
    log_backup_count: int = Field(default=5, description="Number of rotated log files to keep")

    # Transfer filters
    filter: Optional[str] = Field(
        default=None,
        description="Command the send stream is piped through on the sending side",
    )
    filter_remote: Optional[str] = Field(
        default=None,
        description="Filter command on the receiving side (defaults to filter)",
    )

    # External programs
    zfs_program: str = Field(default="zfs", description="Path of the zfs program")
    zpool_program: str = Field(default="zpool", description="Path of the zpool program")
    ssh_program: str = Field(default="ssh", description="Path of the ssh program")

    model_config = SettingsConfigDict(
        env_prefix="ZAP_",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("filter", "filter_remote")
    @classmethod
    def validate_filter(cls, v: Optional[str]) -> Optional[str]:
        """Empty filter variables mean no filter."""
        if v is None or not v.strip():
            return None
        try:
            shlex.split(v)
        except ValueError as exc:
            raise ValueError(f"filter command cannot be parsed: {exc}") from exc
        return v.strip()

    @field_validator("zfs_program", "zpool_program", "ssh_program")
    @classmethod
    def validate_program(cls, v: str) -> str:
        """Program names must be a single word or an absolute path."""
        if not re.match(r"^[A-Za-z0-9_./+-]+$", v):
            raise ValueError(f"invalid program name '{v}'")
        return v

    @model_validator(mode="after")
    def validate_filter_pair(self) -> "Settings":
        """A receiving-side filter undoes the sending side, so it needs one."""
        if self.filter_remote is not None and self.filter is None:
            raise ValueError("ZAP_FILTER_REMOTE requires ZAP_FILTER")
        return self

    @property
    def local_filter_command(self) -> Optional[List[str]]:
        """Argument vector of the sending-side filter, if any."""
        if self.filter is None:
            return None
        return shlex.split(self.filter)

    @property
    def remote_filter_command(self) -> Optional[List[str]]:
        """Argument vector of the receiving-side filter, if any.

        The receiving side undoes the sending side, so ``-d`` is appended.
        """
        if self.filter is None:
            return None
        return shlex.split(self.filter_remote or self.filter) + ["-d"]


# Module-level settings cache (singleton pattern)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Forget the cached settings so the environment is read again."""
    global _settings  # noqa: PLW0603
    _settings = None
