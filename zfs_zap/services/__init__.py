"""Snapshot lifecycle services."""

from zfs_zap.services.destruction import DestructionService
from zfs_zap.services.pool_health import PoolHealthGate
from zfs_zap.services.replication import ReplicationOptions, ReplicationService
from zfs_zap.services.snapshot_creation import SnapshotCreationService
from zfs_zap.services.zfs_client import ZfsClient

__all__ = [
    "DestructionService",
    "PoolHealthGate",
    "ReplicationOptions",
    "ReplicationService",
    "SnapshotCreationService",
    "ZfsClient",
]
