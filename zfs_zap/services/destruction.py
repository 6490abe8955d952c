"""Service for destroying expired zap snapshots."""

from enum import Enum
from typing import Collection, List, Optional

from pydantic import BaseModel, Field

from zfs_zap.logging_config import get_logger
from zfs_zap.models import HealthPolicy, RunContext
from zfs_zap.services.expiration import ExpirationError, is_expired
from zfs_zap.services.naming import InvalidTimestamp, MalformedName, parse_snapshot
from zfs_zap.services.pool_health import PoolHealthGate
from zfs_zap.services.remote_shell import CommandError
from zfs_zap.services.zfs_client import ZfsClient

logger = get_logger(__name__)


class DestructionStatus(str, Enum):
    """Outcome for one zap snapshot."""

    DESTROYED = "destroyed"
    KEPT = "kept"
    SKIPPED_UNSAFE = "skipped_unsafe"
    SKIPPED_AMBIGUOUS = "skipped_ambiguous"
    FAILED = "failed"


class DestructionResult(BaseModel):
    """What happened to one snapshot."""

    snapshot: str = Field(..., description="Full snapshot name")
    status: DestructionStatus = Field(..., description="Outcome")
    error_message: Optional[str] = Field(default=None, description="Why it was skipped or failed")


class DestructionService:
    """Destroys expired snapshots created by the selected hosts.

    Snapshots whose names are not zap names of those hosts are never looked at
    beyond their name.
    """

    def __init__(self, zfs: ZfsClient, context: RunContext, gate: Optional[PoolHealthGate] = None):
        """Initialize the destruction service."""
        self.zfs = zfs
        self.context = context
        self.gate = gate or PoolHealthGate(zfs)

    def destroy_expired(
        self,
        hosts: Optional[Collection[str]] = None,
        policy: Optional[HealthPolicy] = None,
    ) -> List[DestructionResult]:
        """
        Destroy every expired zap snapshot created by ``hosts``.

        Args:
            hosts: Origin hosts to consider, the local host when empty
            policy: Pool health policy, destruction defaults when None

        Returns:
            One result per zap snapshot examined
        """
        host_set = set(hosts) if hosts else {self.context.hostname}
        policy = policy or HealthPolicy.for_destruction()

        results = []
        for full_name in self.zfs.list_snapshots():
            result = self._destroy_one(full_name, host_set, policy)
            if result is not None:
                results.append(result)
        return results

    def _destroy_one(
        self, full_name: str, hosts: Collection[str], policy: HealthPolicy
    ) -> Optional[DestructionResult]:
        try:
            snapshot = parse_snapshot(full_name, hosts)
        except InvalidTimestamp as e:
            logger.warning("Skipping %s: %s", full_name, e)
            return DestructionResult(
                snapshot=full_name, status=DestructionStatus.SKIPPED_AMBIGUOUS, error_message=str(e)
            )
        except MalformedName:
            return None

        try:
            expired = is_expired(self.context.now, snapshot.created, snapshot.zap.ttl)
        except ExpirationError as e:
            logger.warning("Skipping %s: %s", full_name, e)
            return DestructionResult(
                snapshot=full_name, status=DestructionStatus.SKIPPED_AMBIGUOUS, error_message=str(e)
            )

        if not expired:
            logger.debug("Keeping %s", full_name)
            return DestructionResult(snapshot=full_name, status=DestructionStatus.KEPT)

        if not self.gate.permits(snapshot.pool, policy):
            logger.warning("Did not destroy %s", full_name)
            return DestructionResult(snapshot=full_name, status=DestructionStatus.SKIPPED_UNSAFE)

        try:
            self.zfs.destroy(full_name)
        except CommandError as e:
            logger.warning("Failed to destroy %s: %s", full_name, e)
            return DestructionResult(
                snapshot=full_name, status=DestructionStatus.FAILED, error_message=str(e)
            )

        logger.info("Destroyed %s", full_name)
        return DestructionResult(snapshot=full_name, status=DestructionStatus.DESTROYED)
