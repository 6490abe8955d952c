"""Interface to the zfs and zpool programs on one host."""

import shlex
from typing import List, Optional, Sequence, Tuple

from zfs_zap.config import Settings
from zfs_zap.logging_config import get_logger
from zfs_zap.models.destination import Destination
from zfs_zap.services.remote_shell import CommandError, CommandRunner, SSHRunner, run_pipeline

logger = get_logger(__name__)

# User properties read by zap
SNAP_PROPERTY = "zap:snap"
REP_PROPERTY = "zap:rep"
CANMOUNT_PROPERTY = "canmount"

# Value zfs prints for an unset property
UNSET = "-"

# zfs list stderr for a name that is not there, as opposed to a failed query
MISSING_MESSAGE = "does not exist"


class ZfsClient:
    """Runs zfs/zpool commands through a :class:`CommandRunner`.

    Read-only queries always run. Mutating commands are only logged when
    ``dry_run`` is set.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        zfs_program: str = "zfs",
        zpool_program: str = "zpool",
        dry_run: bool = False,
    ):
        self.runner = runner or CommandRunner()
        self.zfs_program = zfs_program
        self.zpool_program = zpool_program
        self.dry_run = dry_run

    @classmethod
    def from_settings(
        cls, settings: Settings, dry_run: bool = False, runner: Optional[CommandRunner] = None
    ) -> "ZfsClient":
        """Build a client using the program paths from ``settings``."""
        return cls(
            runner=runner,
            zfs_program=settings.zfs_program,
            zpool_program=settings.zpool_program,
            dry_run=dry_run,
        )

    def for_destination(self, destination: Destination, ssh_program: str = "ssh") -> "ZfsClient":
        """Client for the host a destination lives on."""
        if destination.is_local:
            runner: CommandRunner = CommandRunner()
        else:
            runner = SSHRunner(destination.host, destination.user, ssh_program=ssh_program)
        return ZfsClient(
            runner=runner,
            zfs_program=self.zfs_program,
            zpool_program=self.zpool_program,
            dry_run=self.dry_run,
        )

    @property
    def label(self) -> str:
        return self.runner.label

    @property
    def is_remote(self) -> bool:
        return self.runner.is_remote

    def _zfs(self, *args: str) -> List[str]:
        return [self.zfs_program, *args]

    def _lines(self, output: str) -> List[str]:
        return [line.strip() for line in output.splitlines() if line.strip()]

    def _mutate(self, argv: List[str]) -> None:
        if self.dry_run:
            logger.info("[%s] would run: %s", self.label, shlex.join(argv))
            return
        self.runner.run(argv)

    # Queries

    def list_datasets_with_property(self, prop: str) -> List[Tuple[str, str]]:
        """All filesystems and volumes with the value of ``prop`` (``-`` when unset)."""
        output = self.runner.run(
            self._zfs("list", "-H", "-o", f"name,{prop}", "-t", "filesystem,volume")
        )
        result = []
        for line in self._lines(output):
            name, _, value = line.partition("\t")
            result.append((name, value.strip()))
        return result

    def list_descendants(self, dataset: str) -> List[str]:
        """``dataset`` followed by all filesystems and volumes below it."""
        output = self.runner.run(
            self._zfs("list", "-H", "-o", "name", "-r", "-t", "filesystem,volume", dataset)
        )
        return self._lines(output)

    def _exists(self, argv: List[str]) -> bool:
        """
        Whether ``zfs list`` finds the named object.

        Raises:
            CommandError: If the query fails for any reason other than absence
        """
        try:
            self.runner.run(argv)
        except CommandError as e:
            if MISSING_MESSAGE in e.stderr:
                return False
            raise
        return True

    def dataset_exists(self, dataset: str) -> bool:
        return self._exists(self._zfs("list", "-H", "-o", "name", dataset))

    def list_snapshots(self, dataset: Optional[str] = None) -> List[str]:
        """
        Snapshot names, oldest first.

        Args:
            dataset: Only snapshots of this dataset (not its children); all when None
        """
        argv = self._zfs("list", "-H", "-o", "name", "-t", "snapshot", "-s", "creation")
        if dataset is not None:
            argv += ["-d", "1", dataset]
        return self._lines(self.runner.run(argv))

    def snapshot_exists(self, full_name: str) -> bool:
        return self._exists(self._zfs("list", "-H", "-o", "name", "-t", "snapshot", full_name))

    def bookmark_exists(self, full_name: str) -> bool:
        return self._exists(self._zfs("list", "-H", "-o", "name", "-t", "bookmark", full_name))

    def get_property(self, dataset: str, prop: str) -> str:
        output = self.runner.run(self._zfs("get", "-H", "-o", "value", prop, dataset))
        return output.strip()

    def pool_status(self, pool: str) -> str:
        """Raw ``zpool status`` output for ``pool``."""
        return self.runner.run([self.zpool_program, "status", pool])

    # Mutations

    def create_snapshot(self, dataset: str, name: str, recursive: bool = False) -> None:
        argv = self._zfs("snapshot")
        if recursive:
            argv.append("-r")
        argv.append(f"{dataset}@{name}")
        self._mutate(argv)

    def destroy(self, full_name: str) -> None:
        self._mutate(self._zfs("destroy", full_name))

    def create_bookmark(self, snapshot: str, bookmark: str) -> None:
        self._mutate(self._zfs("bookmark", snapshot, bookmark))

    def set_property(self, dataset: str, prop: str, value: str) -> None:
        self._mutate(self._zfs("set", f"{prop}={value}", dataset))

    def inherit_property(self, dataset: str, prop: str) -> None:
        self._mutate(self._zfs("inherit", prop, dataset))

    # Transfers

    def send_command(
        self,
        snapshot: str,
        base: Optional[str] = None,
        intermediates: bool = False,
        compressed: bool = True,
        properties: bool = False,
    ) -> List[str]:
        """
        Build a ``zfs send`` command.

        Args:
            snapshot: Snapshot to send
            base: Snapshot or bookmark to send from, None for a full stream
            intermediates: Include intermediate snapshots (``-I``); ``-i`` otherwise
            compressed: Send compressed blocks as stored (``-c``)
            properties: Include dataset properties (``-p``)
        """
        argv = self._zfs("send")
        if compressed:
            argv.append("-c")
        if properties:
            argv.append("-p")
        if base is not None:
            argv += ["-I" if intermediates else "-i", base]
        argv.append(snapshot)
        return argv

    def receive_command(self, parent: str, force: bool = False) -> List[str]:
        """``zfs receive`` into ``parent``, dropping the pool name and leaving the copy unmounted."""
        argv = self._zfs("receive", "-d", "-u")
        if force:
            argv.append("-F")
        argv.append(parent)
        return argv

    def send(
        self,
        snapshot: str,
        target: "ZfsClient",
        parent: str,
        base: Optional[str] = None,
        intermediates: bool = False,
        compressed: bool = True,
        properties: bool = False,
        force: bool = False,
        local_filter: Optional[Sequence[str]] = None,
        remote_filter: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Send ``snapshot`` from this host and receive it on ``target`` under ``parent``.

        Filters only apply when ``target`` is remote.

        Raises:
            CommandError: If any part of the pipeline fails
        """
        send_argv = self.send_command(snapshot, base, intermediates, compressed, properties)
        receive_stages: List[Sequence[str]] = [target.receive_command(parent, force)]

        legs: List[Tuple[CommandRunner, Sequence[Sequence[str]]]] = [(self.runner, [send_argv])]
        if target.is_remote:
            if local_filter:
                legs.append((self.runner, [list(local_filter)]))
            if remote_filter:
                receive_stages.insert(0, list(remote_filter))
        legs.append((target.runner, receive_stages))

        if self.dry_run:
            rendered = " | ".join(shlex.join(runner.command_line(stages)) for runner, stages in legs)
            logger.info("[%s] would run: %s", self.label, rendered)
            return
        run_pipeline(legs)
