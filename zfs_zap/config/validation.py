"""Startup validation of the host environment."""

import shutil
from typing import Optional

from zfs_zap.config.settings import Settings
from zfs_zap.logging_config import get_logger

logger = get_logger(__name__)


class ConfigurationError(Exception):
    """Raised when the environment cannot support a zap run."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        """
        Initialize configuration error.

        Args:
            message: Error message
            suggestion: Optional suggestion for fixing the issue
        """
        self.message = message
        self.suggestion = suggestion
        full_message = message
        if suggestion:
            full_message = f"{message} ({suggestion})"
        super().__init__(full_message)


def validate_environment(settings: Settings) -> None:
    """
    Validate that the programs zap drives are available.

    Raises:
        ConfigurationError: If any validation fails
    """
    logger.debug("Validating environment...")

    errors = []
    for program in (settings.zfs_program, settings.zpool_program):
        try:
            validate_program(program)
        except ConfigurationError as e:
            errors.append(str(e))

    if errors:
        raise ConfigurationError("; ".join(errors))

    logger.debug("Environment validation passed")


def validate_program(program: str) -> None:
    """
    Check that a program resolves on PATH (or is an executable path).

    Raises:
        ConfigurationError: If the program cannot be found
    """
    if shutil.which(program) is None:
        raise ConfigurationError(
            f"'{program}' not found",
            suggestion="is ZFS installed and on PATH?",
        )


def validate_hostname(hostname: str) -> str:
    """
    Validate the local short hostname used as origin host.

    Returns:
        The hostname unchanged

    Raises:
        ConfigurationError: If the hostname is empty or cannot appear in a snapshot name
    """
    if not hostname:
        raise ConfigurationError("unable to determine the local hostname")
    if any(c in hostname for c in "@#/ \t"):
        raise ConfigurationError(f"hostname '{hostname}' cannot be used in a snapshot name")
    return hostname
