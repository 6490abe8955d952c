"""Core data models for zap."""

from zfs_zap.models.destination import Destination, InvalidDestination
from zfs_zap.models.pool import HealthPolicy, PoolState, PoolStatus
from zfs_zap.models.run_context import RunContext
from zfs_zap.models.snapshot import Snapshot, Ttl, ZapName

__all__ = [
    "Destination",
    "InvalidDestination",
    "HealthPolicy",
    "PoolState",
    "PoolStatus",
    "RunContext",
    "Snapshot",
    "Ttl",
    "ZapName",
]
