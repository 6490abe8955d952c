"""Service for replicating zap snapshots to another pool or host.

For each ``(dataset, destination)`` pair the newest local zap snapshot is
compared with the newest snapshot of the copy on the destination:

* no copy, or a copy without snapshots: full send;
* the copy's newest snapshot is not a zap snapshot of the origin host: error,
  the copy is left alone;
* the local newest is not newer: nothing to do;
* otherwise: incremental send from the copy's newest snapshot, using the
  local snapshot of that name if it still exists (``-I``, intermediate
  snapshots included) or its bookmark (``-i``, one delta).

Every successful send is followed by a bookmark of the sent snapshot, so a
later incremental is possible after the snapshot itself has expired.
"""

from enum import Enum
from typing import Callable, Collection, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from zfs_zap.config import Settings, get_settings
from zfs_zap.logging_config import get_logger
from zfs_zap.models import Destination, HealthPolicy, InvalidDestination, RunContext, Snapshot
from zfs_zap.services.naming import MalformedName, parse_snapshot
from zfs_zap.services.pool_health import PoolHealthGate
from zfs_zap.services.remote_shell import CommandError
from zfs_zap.services.zfs_client import (
    CANMOUNT_PROPERTY,
    REP_PROPERTY,
    SNAP_PROPERTY,
    UNSET,
    ZfsClient,
)

logger = get_logger(__name__)


class TransferMode(str, Enum):
    """Kind of transfer a pair needs."""

    FULL = "full"
    INCREMENTAL = "incremental"
    NONE = "none"


class ReplicationStatus(str, Enum):
    """Outcome of replicating one pair."""

    FULL = "full"
    INCREMENTAL = "incremental"
    UP_TO_DATE = "up_to_date"
    DISABLED = "disabled"
    INVALID = "invalid"
    SKIPPED = "skipped"
    FAILED = "failed"
    ERROR = "error"


class NoBaseline(Exception):
    """Raised when neither the snapshot nor the bookmark to send from exists locally."""


class TransferPlan(BaseModel):
    """How to bring the destination up to date."""

    mode: TransferMode = Field(..., description="Transfer kind")
    snapshot: Optional[str] = Field(default=None, description="Snapshot to send")
    base: Optional[str] = Field(default=None, description="Snapshot or bookmark to send from")
    intermediates: bool = Field(default=False, description="Send intermediate snapshots too")


class ReplicationOptions(BaseModel):
    """Options shared by all pairs of one run."""

    compressed: bool = Field(default=True, description="Send compressed blocks as stored")
    force: bool = Field(default=False, description="Roll back divergent changes on receive")
    origin_host: Optional[str] = Field(
        default=None, description="Replicate snapshots created by this host instead of the local one"
    )
    policy: HealthPolicy = Field(
        default_factory=HealthPolicy.for_creation, description="Source pool health policy"
    )


class ReplicationResult(BaseModel):
    """What happened to one pair."""

    dataset: str = Field(..., description="Local dataset")
    destination: str = Field(..., description="Destination as given")
    status: ReplicationStatus = Field(..., description="Outcome")
    snapshot: Optional[str] = Field(default=None, description="Snapshot sent")
    base: Optional[str] = Field(default=None, description="Snapshot or bookmark sent from")
    error_message: Optional[str] = Field(default=None, description="Why it was skipped or failed")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal follow-up failures")


def newest_snapshot(names: Sequence[str], hosts: Collection[str]) -> Optional[Snapshot]:
    """Newest zap snapshot of ``hosts`` among ``names`` (ordered oldest first), by embedded time."""
    newest = None
    for name in names:
        try:
            snapshot = parse_snapshot(name, hosts)
        except MalformedName:
            continue
        if newest is None or snapshot.created >= newest.created:
            newest = snapshot
    return newest


def plan_transfer(
    local_newest: Snapshot,
    remote_newest: Optional[Snapshot],
    has_snapshot: Callable[[str], bool],
    has_bookmark: Callable[[str], bool],
) -> TransferPlan:
    """
    Decide how to bring a copy up to date.

    Args:
        local_newest: Newest local zap snapshot
        remote_newest: Newest zap snapshot of the copy (named after the copy's dataset), or None
        has_snapshot: Whether a local snapshot exists
        has_bookmark: Whether a local bookmark exists

    Returns:
        The plan

    Raises:
        NoBaseline: If an incremental is needed but nothing local matches the copy
    """
    if remote_newest is None:
        return TransferPlan(mode=TransferMode.FULL, snapshot=local_newest.full_name)

    if local_newest.created <= remote_newest.created:
        return TransferPlan(mode=TransferMode.NONE)

    base_snapshot = f"{local_newest.dataset}@{remote_newest.name}"
    if has_snapshot(base_snapshot):
        return TransferPlan(
            mode=TransferMode.INCREMENTAL,
            snapshot=local_newest.full_name,
            base=base_snapshot,
            intermediates=True,
        )

    # Without the snapshot only a single delta can be sent
    base_bookmark = f"{local_newest.dataset}#{remote_newest.name}"
    if has_bookmark(base_bookmark):
        return TransferPlan(
            mode=TransferMode.INCREMENTAL,
            snapshot=local_newest.full_name,
            base=base_bookmark,
            intermediates=False,
        )

    raise NoBaseline(
        f"neither {base_snapshot} nor {base_bookmark} exists, cannot send incrementally"
    )


class ReplicationService:
    """Replicates datasets to their destinations, one pair at a time."""

    def __init__(
        self,
        zfs: ZfsClient,
        context: RunContext,
        settings: Optional[Settings] = None,
        gate: Optional[PoolHealthGate] = None,
    ):
        """Initialize the replication service."""
        self.zfs = zfs
        self.context = context
        self.settings = settings or get_settings()
        self.gate = gate or PoolHealthGate(zfs)

    def select_pairs(self) -> List[Tuple[str, str]]:
        """Datasets with a zap:rep property and its value."""
        return [
            (name, value)
            for name, value in self.zfs.list_datasets_with_property(REP_PROPERTY)
            if value and value != UNSET
        ]

    def expand(self, targets: Sequence[Tuple[str, bool]]) -> List[str]:
        """Datasets named by ``(dataset, recursive)`` targets, descendants included where recursive."""
        datasets: List[str] = []
        for dataset, recursive in targets:
            if recursive:
                try:
                    found = self.zfs.list_descendants(dataset)
                except CommandError as e:
                    logger.warning("Cannot list datasets below %s: %s", dataset, e)
                    found = [dataset]
            else:
                found = [dataset]
            datasets.extend(name for name in found if name not in datasets)
        return datasets

    def replicate(
        self,
        destination: Optional[str] = None,
        targets: Optional[Sequence[Tuple[str, bool]]] = None,
        options: Optional[ReplicationOptions] = None,
    ) -> List[ReplicationResult]:
        """
        Replicate every pair.

        Args:
            destination: Destination for all ``targets``; pairs come from zap:rep when None
            targets: ``(dataset, recursive)`` pairs for ``destination``
            options: Run options

        Returns:
            One result per pair
        """
        options = options or ReplicationOptions()
        if destination is None:
            pairs = self.select_pairs()
            logger.debug("Selected %d datasets by %s", len(pairs), REP_PROPERTY)
        else:
            pairs = [(dataset, destination) for dataset in self.expand(targets or [])]

        return [self.replicate_pair(dataset, dest, options) for dataset, dest in pairs]

    def replicate_pair(
        self, dataset: str, destination_value: str, options: ReplicationOptions
    ) -> ReplicationResult:
        """Bring the copy of ``dataset`` on ``destination_value`` up to date."""
        origin = options.origin_host or self.context.hostname
        hosts = {origin}

        def result(status: ReplicationStatus, **kwargs) -> ReplicationResult:
            return ReplicationResult(
                dataset=dataset, destination=destination_value, status=status, **kwargs
            )

        try:
            destination = Destination.parse(destination_value)
        except InvalidDestination as e:
            logger.error("Not replicating %s: %s", dataset, e)
            return result(ReplicationStatus.INVALID, error_message=str(e))

        if destination.disabled:
            logger.debug("Replication of %s is disabled", dataset)
            return result(ReplicationStatus.DISABLED)

        try:
            exists = self.zfs.dataset_exists(dataset)
        except CommandError as e:
            logger.warning("Cannot query %s: %s", dataset, e)
            return result(ReplicationStatus.FAILED, error_message=str(e))
        if not exists:
            logger.warning("Dataset %s does not exist, skipping", dataset)
            return result(ReplicationStatus.SKIPPED, error_message="dataset does not exist")

        if not self.gate.permits(dataset.split("/", 1)[0], options.policy):
            logger.warning("Did not replicate %s", dataset)
            return result(ReplicationStatus.SKIPPED, error_message="pool is not safe")

        try:
            local_newest = newest_snapshot(self.zfs.list_snapshots(dataset), hosts)
        except CommandError as e:
            logger.warning("Cannot list snapshots of %s: %s", dataset, e)
            return result(ReplicationStatus.FAILED, error_message=str(e))
        if local_newest is None:
            logger.warning("No snapshot of %s created by %s, skipping", dataset, origin)
            return result(ReplicationStatus.SKIPPED, error_message="no snapshot to replicate")

        remote = self.zfs.for_destination(destination, ssh_program=self.settings.ssh_program)
        remote_dataset = destination.remote_dataset(dataset)

        try:
            remote_names = (
                remote.list_snapshots(remote_dataset) if remote.dataset_exists(remote_dataset) else []
            )
        except CommandError as e:
            logger.warning("Cannot list snapshots of %s on %s: %s", remote_dataset, remote.label, e)
            return result(ReplicationStatus.FAILED, error_message=str(e))

        remote_newest = None
        if remote_names:
            try:
                remote_newest = parse_snapshot(remote_names[-1], hosts)
            except MalformedName:
                message = (
                    f"newest snapshot {remote_names[-1]} on {remote.label} is not a zap "
                    f"snapshot of {origin}, cannot replicate {dataset} incrementally"
                )
                logger.error(message)
                return result(ReplicationStatus.ERROR, error_message=message)

        try:
            plan = plan_transfer(
                local_newest, remote_newest, self.zfs.snapshot_exists, self.zfs.bookmark_exists
            )
        except (NoBaseline, CommandError) as e:
            logger.warning("Not replicating %s to %s: %s", dataset, destination, e)
            return result(ReplicationStatus.FAILED, error_message=str(e))

        if plan.mode == TransferMode.NONE:
            logger.info("%s is up to date on %s", remote_dataset, remote.label)
            return result(ReplicationStatus.UP_TO_DATE, snapshot=local_newest.full_name)

        full = plan.mode == TransferMode.FULL
        try:
            self.zfs.send(
                local_newest.full_name,
                remote,
                destination.parent,
                base=plan.base,
                intermediates=plan.intermediates,
                compressed=options.compressed,
                properties=full,
                force=options.force,
                local_filter=self.settings.local_filter_command,
                remote_filter=self.settings.remote_filter_command,
            )
        except CommandError as e:
            logger.warning("Failed to send %s to %s: %s", local_newest, destination, e)
            return result(
                ReplicationStatus.FAILED,
                snapshot=local_newest.full_name,
                base=plan.base,
                error_message=str(e),
            )

        logger.info(
            "Sent %s to %s on %s%s",
            local_newest,
            remote_dataset,
            remote.label,
            f" from {plan.base}" if plan.base else "",
        )

        warnings = [self._bookmark(local_newest)]
        if full:
            warnings += self._settle_copy(dataset, remote, remote_dataset)

        return result(
            ReplicationStatus.FULL if full else ReplicationStatus.INCREMENTAL,
            snapshot=local_newest.full_name,
            base=plan.base,
            warnings=[w for w in warnings if w],
        )

    def _bookmark(self, snapshot: Snapshot) -> Optional[str]:
        """Bookmark a sent snapshot. Returns a warning on failure."""
        try:
            if self.zfs.bookmark_exists(snapshot.bookmark_name):
                return None
            self.zfs.create_bookmark(snapshot.full_name, snapshot.bookmark_name)
        except CommandError as e:
            message = f"failed to create bookmark {snapshot.bookmark_name}: {e}"
            logger.warning(message)
            return message
        if not self.zfs.dry_run:
            logger.info("Created bookmark %s", snapshot.bookmark_name)
        return None

    def _settle_copy(self, dataset: str, remote: ZfsClient, remote_dataset: str) -> List[str]:
        """Keep a fresh copy from mounting over the original and from being snapshotted or replicated itself."""
        warnings = []
        try:
            canmount = self.zfs.get_property(dataset, CANMOUNT_PROPERTY)
            if canmount == "on":
                remote.set_property(remote_dataset, CANMOUNT_PROPERTY, "noauto")
        except CommandError as e:
            message = f"failed to set {CANMOUNT_PROPERTY}=noauto on {remote_dataset}: {e}"
            logger.warning(message)
            warnings.append(message)

        for prop in (SNAP_PROPERTY, REP_PROPERTY):
            try:
                remote.inherit_property(remote_dataset, prop)
            except CommandError as e:
                message = f"failed to clear {prop} on {remote_dataset}: {e}"
                logger.warning(message)
                warnings.append(message)
        return warnings
