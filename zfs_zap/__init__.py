"""zap: ZFS snapshot creation, expiration and replication for cron."""

__version__ = "0.9.0"
