"""Configuration management for zap."""

from zfs_zap.config.settings import Settings, get_settings, reset_settings

__all__ = ["Settings", "get_settings", "reset_settings"]
