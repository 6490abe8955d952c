"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set

import pytest

from zfs_zap.config import Settings, reset_settings
from zfs_zap.models import Destination, RunContext
from zfs_zap.services.remote_shell import CommandError

ONLINE_STATUS = """  pool: {pool}
 state: ONLINE
  scan: scrub repaired 0B in 00:03:12 with 0 errors on Sun Oct 11 00:27:13 2026
config:

	NAME        STATE     READ WRITE CKSUM
	{pool}      ONLINE       0     0     0
	  mirror-0  ONLINE       0     0     0
	    ada0p3  ONLINE       0     0     0
	    ada1p3  ONLINE       0     0     0

errors: No known data errors
"""

DEGRADED_STATUS = """  pool: {pool}
 state: DEGRADED
status: One or more devices could not be opened.  Sufficient replicas exist for
	the pool to continue functioning in a degraded state.
action: Attach the missing device and online it using 'zpool online'.
  scan: scrub repaired 0B in 00:03:12 with 0 errors on Sun Oct 11 00:27:13 2026
config:

	NAME        STATE     READ WRITE CKSUM
	{pool}      DEGRADED     0     0     0
	  mirror-0  DEGRADED     0     0     0
	    ada0p3  ONLINE       0     0     0
	    ada1p3  UNAVAIL      0     0     0  cannot open

errors: No known data errors
"""

SCRUBBING_STATUS = """  pool: {pool}
 state: ONLINE
  scan: scrub in progress since Sat Oct 17 01:00:00 2026
	1.20T scanned at 512M/s, 600G issued at 256M/s, 2.40T total
	0B repaired, 24.41% done, 02:03:04 to go
config:

	NAME        STATE     READ WRITE CKSUM
	{pool}      ONLINE       0     0     0

errors: No known data errors
"""

RESILVERING_STATUS = """  pool: {pool}
 state: DEGRADED
status: One or more devices is currently being resilvered.
  scan: resilver in progress since Sat Oct 17 01:00:00 2026
	300G scanned at 1.00G/s, 120G issued at 400M/s, 1.20T total
	120G resilvered, 10.00% done, 00:46:05 to go
config:

	NAME             STATE     READ WRITE CKSUM
	{pool}           DEGRADED     0     0     0
	  replacing-1    DEGRADED     0     0     0

errors: No known data errors
"""

FAULTED_STATUS = """  pool: {pool}
 state: FAULTED
status: One or more devices could not be opened.  There are insufficient
	replicas for the pool to continue functioning.
"""


class FakeZfs:
    """In-memory stand-in for :class:`ZfsClient`.

    Snapshots are kept in creation order. ``failures`` holds operation keys
    such as ``"destroy:tank@x"`` or ``"send"`` that raise :class:`CommandError`.
    """

    def __init__(self, label: str = "local", remote: bool = False):
        self._label = label
        self._remote = remote
        self.dry_run = False
        self.datasets: Dict[str, Dict[str, str]] = {}
        self.snapshots: List[str] = []
        self.bookmarks: Set[str] = set()
        self.pools: Dict[str, str] = {}
        self.failures: Set[str] = set()
        self.remotes: Dict[str, "FakeZfs"] = {}
        self.sent: List[dict] = []
        self.calls: List[str] = []

    # Setup helpers

    def add_dataset(self, name: str, **properties: str) -> None:
        self.datasets[name] = dict(properties)
        pool = name.split("/", 1)[0]
        self.pools.setdefault(pool, ONLINE_STATUS.format(pool=pool))

    def add_snapshot(self, full_name: str) -> None:
        dataset = full_name.split("@", 1)[0]
        if dataset not in self.datasets:
            self.add_dataset(dataset)
        self.snapshots.append(full_name)

    def set_pool(self, pool: str, template: str) -> None:
        self.pools[pool] = template.format(pool=pool)

    def remote(self, host: str) -> "FakeZfs":
        if host not in self.remotes:
            self.remotes[host] = FakeZfs(label=host, remote=True)
        return self.remotes[host]

    def _check(self, key: str) -> None:
        self.calls.append(key)
        if key in self.failures or key.split(":", 1)[0] in self.failures:
            raise CommandError(["zfs", *key.split(":", 1)], 1, f"cannot {key}")

    # ZfsClient interface

    @property
    def label(self) -> str:
        return self._label

    @property
    def is_remote(self) -> bool:
        return self._remote

    def for_destination(self, destination: Destination, ssh_program: str = "ssh") -> "FakeZfs":
        if destination.is_local:
            return self
        return self.remote(destination.host)

    def list_datasets_with_property(self, prop: str):
        return [(name, props.get(prop, "-")) for name, props in sorted(self.datasets.items())]

    def list_descendants(self, dataset: str) -> List[str]:
        self._check(f"list:{dataset}")
        return [
            name
            for name in sorted(self.datasets)
            if name == dataset or name.startswith(dataset + "/")
        ]

    def dataset_exists(self, dataset: str) -> bool:
        self._check(f"exists:{dataset}")
        return dataset in self.datasets

    def list_snapshots(self, dataset: Optional[str] = None) -> List[str]:
        self._check(f"list_snapshots:{dataset}")
        if dataset is None:
            return list(self.snapshots)
        return [s for s in self.snapshots if s.split("@", 1)[0] == dataset]

    def snapshot_exists(self, full_name: str) -> bool:
        return full_name in self.snapshots

    def bookmark_exists(self, full_name: str) -> bool:
        return full_name in self.bookmarks

    def get_property(self, dataset: str, prop: str) -> str:
        self._check(f"get:{dataset}")
        return self.datasets.get(dataset, {}).get(prop, "-")

    def pool_status(self, pool: str) -> str:
        self._check(f"status:{pool}")
        if pool not in self.pools:
            raise CommandError(["zpool", "status", pool], 1, f"cannot open '{pool}': no such pool")
        return self.pools[pool]

    def create_snapshot(self, dataset: str, name: str, recursive: bool = False) -> None:
        self._check(f"snapshot:{dataset}@{name}")
        names = [dataset]
        if recursive:
            names = self.list_descendants(dataset)
        for ds in names:
            self.snapshots.append(f"{ds}@{name}")

    def destroy(self, full_name: str) -> None:
        self._check(f"destroy:{full_name}")
        self.snapshots.remove(full_name)

    def create_bookmark(self, snapshot: str, bookmark: str) -> None:
        self._check(f"bookmark:{bookmark}")
        self.bookmarks.add(bookmark)

    def set_property(self, dataset: str, prop: str, value: str) -> None:
        self._check(f"set:{dataset}")
        self.datasets.setdefault(dataset, {})[prop] = value

    def inherit_property(self, dataset: str, prop: str) -> None:
        self._check(f"inherit:{dataset}")
        self.datasets.setdefault(dataset, {}).pop(prop, None)

    def send(
        self,
        snapshot: str,
        target: "FakeZfs",
        parent: str,
        base: Optional[str] = None,
        intermediates: bool = False,
        compressed: bool = True,
        properties: bool = False,
        force: bool = False,
        local_filter: Optional[Sequence[str]] = None,
        remote_filter: Optional[Sequence[str]] = None,
    ) -> None:
        self._check(f"send:{snapshot}")
        dataset, name = snapshot.split("@", 1)
        remote_dataset = parent if "/" not in dataset else f"{parent}/{dataset.split('/', 1)[1]}"
        self.sent.append(
            {
                "snapshot": snapshot,
                "target": target.label,
                "remote_dataset": remote_dataset,
                "base": base,
                "intermediates": intermediates,
                "compressed": compressed,
                "properties": properties,
                "force": force,
            }
        )
        if remote_dataset not in target.datasets:
            copied = dict(self.datasets.get(dataset, {})) if properties else {}
            target.datasets[remote_dataset] = copied
        target.snapshots.append(f"{remote_dataset}@{name}")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep ZAP_* variables of the developer's shell out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("ZAP_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def now():
    """A fixed run instant with a non-UTC offset."""
    return datetime(2026, 10, 17, 3, 15, 0, tzinfo=timezone(timedelta(hours=2)))


@pytest.fixture
def context(now):
    """Run context for host alpha."""
    return RunContext(hostname="alpha", now=now)


@pytest.fixture
def settings():
    """Default settings."""
    return Settings()


@pytest.fixture
def fake_zfs():
    """An empty in-memory storage engine."""
    return FakeZfs()


@pytest.fixture
def status_templates():
    """Captured ``zpool status`` outputs, formatted with ``pool``."""
    return {
        "online": ONLINE_STATUS,
        "degraded": DEGRADED_STATUS,
        "scrubbing": SCRUBBING_STATUS,
        "resilvering": RESILVERING_STATUS,
        "faulted": FAULTED_STATUS,
    }
