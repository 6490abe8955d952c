"""Service for creating zap snapshots."""

from enum import Enum
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from zfs_zap.logging_config import get_logger
from zfs_zap.models import HealthPolicy, RunContext, Ttl
from zfs_zap.services.naming import encode
from zfs_zap.services.pool_health import PoolHealthGate
from zfs_zap.services.remote_shell import CommandError
from zfs_zap.services.zfs_client import SNAP_PROPERTY, ZfsClient

logger = get_logger(__name__)

# Value of zap:snap that selects a dataset
SNAP_ENABLED = "on"


class CreationStatus(str, Enum):
    """Outcome of creating one snapshot."""

    CREATED = "created"
    SKIPPED_UNSAFE = "skipped_unsafe"
    FAILED = "failed"


class CreationResult(BaseModel):
    """What happened to one dataset."""

    dataset: str = Field(..., description="Dataset snapshotted")
    snapshot: str = Field(..., description="Full name of the (intended) snapshot")
    recursive: bool = Field(default=False, description="Descendants included")
    status: CreationStatus = Field(..., description="Outcome")
    error_message: Optional[str] = Field(default=None, description="Why it failed")


class SnapshotCreationService:
    """Creates one snapshot per target dataset, gated on pool health."""

    def __init__(self, zfs: ZfsClient, context: RunContext, gate: Optional[PoolHealthGate] = None):
        """Initialize the creation service."""
        self.zfs = zfs
        self.context = context
        self.gate = gate or PoolHealthGate(zfs)

    def select_datasets(self) -> List[Tuple[str, bool]]:
        """Datasets whose zap:snap property is ``on``, non-recursive."""
        return [
            (name, False)
            for name, value in self.zfs.list_datasets_with_property(SNAP_PROPERTY)
            if value == SNAP_ENABLED
        ]

    def create(
        self,
        ttl: Ttl,
        targets: Optional[Sequence[Tuple[str, bool]]] = None,
        policy: Optional[HealthPolicy] = None,
    ) -> List[CreationResult]:
        """
        Create a snapshot of each target.

        Args:
            ttl: TTL class of the new snapshots
            targets: ``(dataset, recursive)`` pairs; selected by property when empty
            policy: Pool health policy, creation defaults when None

        Returns:
            One result per target
        """
        policy = policy or HealthPolicy.for_creation()
        if not targets:
            targets = self.select_datasets()
            logger.debug("Selected %d datasets by %s", len(targets), SNAP_PROPERTY)

        name = encode(self.context.hostname, self.context.now, ttl)
        return [self._create_one(dataset, recursive, name, policy) for dataset, recursive in targets]

    def _create_one(
        self, dataset: str, recursive: bool, name: str, policy: HealthPolicy
    ) -> CreationResult:
        snapshot = f"{dataset}@{name}"
        pool = dataset.split("/", 1)[0]

        if not self.gate.permits(pool, policy):
            logger.warning("Did not create %s", snapshot)
            return CreationResult(
                dataset=dataset,
                snapshot=snapshot,
                recursive=recursive,
                status=CreationStatus.SKIPPED_UNSAFE,
            )

        try:
            self.zfs.create_snapshot(dataset, name, recursive=recursive)
        except CommandError as e:
            logger.warning("Failed to create %s: %s", snapshot, e)
            return CreationResult(
                dataset=dataset,
                snapshot=snapshot,
                recursive=recursive,
                status=CreationStatus.FAILED,
                error_message=str(e),
            )

        logger.info("Created %s%s", snapshot, " (recursive)" if recursive else "")
        return CreationResult(
            dataset=dataset, snapshot=snapshot, recursive=recursive, status=CreationStatus.CREATED
        )
