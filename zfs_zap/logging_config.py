"""Logging configuration for zap."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from zfs_zap.config import Settings, get_settings

# Prefixes make fatal errors, per-item errors and warnings distinguishable in cron mail
LEVEL_PREFIXES = {
    logging.CRITICAL: "FATAL: ",
    logging.ERROR: "ERROR: ",
    logging.WARNING: "WARN: ",
}


class PrefixFormatter(logging.Formatter):
    """Formatter that prefixes warnings and errors with a short severity tag."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return LEVEL_PREFIXES.get(record.levelno, "") + message


def setup_logging(verbose: bool = False, settings: Optional[Settings] = None) -> None:
    """Configure logging for a zap run.

    Console output goes to stderr. ``verbose`` lowers the level to INFO unless
    the configured level is already more detailed.
    """
    settings = settings or get_settings()

    level = getattr(logging, settings.log_level)
    if verbose:
        level = min(level, logging.INFO)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(PrefixFormatter(fmt="%(message)s"))
    root_logger.addHandler(console_handler)

    # File handler with rotation
    if settings.log_file:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning("could not log to %s: %s", settings.log_file, e)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
