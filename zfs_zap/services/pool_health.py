"""Pool health gate.

``zpool status`` output is parsed into a :class:`PoolStatus` and checked
against a :class:`HealthPolicy`. Anything that cannot be queried or parsed
counts as unsafe.
"""

import re

from zfs_zap.logging_config import get_logger
from zfs_zap.models.pool import HealthPolicy, PoolStatus
from zfs_zap.services.remote_shell import CommandError
from zfs_zap.services.zfs_client import ZfsClient

logger = get_logger(__name__)

STATE_RE = re.compile(r"^\s*state:\s*(?P<state>\S+)", re.MULTILINE)
SCRUB_RE = re.compile(r"scrub in progress", re.IGNORECASE)
RESILVER_RE = re.compile(r"resilver in progress", re.IGNORECASE)


class PoolStatusError(Exception):
    """Raised when pool status output cannot be understood."""


def parse_pool_status(pool: str, text: str) -> PoolStatus:
    """
    Parse ``zpool status <pool>`` output.

    Args:
        pool: Pool the output belongs to
        text: Raw output

    Returns:
        The pool status

    Raises:
        PoolStatusError: If the output has no state line
    """
    match = STATE_RE.search(text)
    if match is None:
        raise PoolStatusError(f"no state in status output for pool {pool}")
    return PoolStatus(
        name=pool,
        state=match.group("state").upper(),
        scrubbing=bool(SCRUB_RE.search(text)),
        resilvering=bool(RESILVER_RE.search(text)),
    )


class PoolHealthGate:
    """Decides whether an operation may touch a pool right now."""

    def __init__(self, zfs: ZfsClient):
        """Initialize the gate."""
        self.zfs = zfs

    def status(self, pool: str) -> PoolStatus:
        """
        Query the current status of ``pool``.

        Raises:
            PoolStatusError: If the query fails or its output is unparseable
        """
        try:
            output = self.zfs.pool_status(pool)
        except CommandError as e:
            raise PoolStatusError(f"cannot query pool {pool}: {e}") from e
        return parse_pool_status(pool, output)

    def permits(self, pool: str, policy: HealthPolicy) -> bool:
        """Whether ``policy`` allows an operation on ``pool``. Logs the reason when not."""
        try:
            status = self.status(pool)
        except PoolStatusError as e:
            logger.warning("%s, treating it as unsafe", e)
            return False

        reason = policy.refusal_reason(status)
        if reason is not None:
            logger.warning("%s, skipping", reason)
            return False
        return True
