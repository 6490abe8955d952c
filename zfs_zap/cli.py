"""Command line interface.

::

    zap snap|snapshot [-DLSnv] TTL [[-r] dataset]...
    zap rep|replicate [-CDFLSnv] [-h host] [[[user@]host:]parent_dataset [-r] dataset...]
    zap destroy [-Dlsnv] [host[,host]...]
    zap -v|-version|--version
"""

import argparse
import sys
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError

from zfs_zap import __version__
from zfs_zap.config import get_settings
from zfs_zap.config.validation import ConfigurationError, validate_environment
from zfs_zap.logging_config import get_logger, setup_logging
from zfs_zap.models import HealthPolicy, RunContext
from zfs_zap.services.destruction import DestructionService
from zfs_zap.services.naming import InvalidTtl, parse_ttl
from zfs_zap.services.remote_shell import CommandError
from zfs_zap.services.replication import ReplicationOptions, ReplicationService
from zfs_zap.services.snapshot_creation import SnapshotCreationService
from zfs_zap.services.zfs_client import ZfsClient

logger = get_logger(__name__)


class UsageError(Exception):
    """Raised for dataset lists that argparse cannot check by itself."""


def parse_targets(tokens: Sequence[str]) -> List[Tuple[str, bool]]:
    """
    Parse ``[[-r] dataset]...`` into ``(dataset, recursive)`` pairs.

    Raises:
        UsageError: On a dangling ``-r`` or an unknown option
    """
    targets = []
    recursive = False
    for token in tokens:
        if token == "-r":
            if recursive:
                raise UsageError("-r given twice")
            recursive = True
        elif token.startswith("-"):
            raise UsageError(f"unexpected option '{token}'")
        else:
            targets.append((token, recursive))
            recursive = False
    if recursive:
        raise UsageError("-r must be followed by a dataset")
    return targets


def parse_hosts(values: Sequence[str]) -> List[str]:
    """Split ``host[,host]...`` arguments into host names."""
    hosts = []
    for value in values:
        hosts.extend(host for host in value.split(",") if host)
    return hosts


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-n", dest="dry_run", action="store_true", help="dry run, show what would be done")
    parser.add_argument("-v", dest="verbose", action="store_true", help="verbose output")


def build_parser() -> argparse.ArgumentParser:
    """Build the zap argument parser."""
    parser = argparse.ArgumentParser(
        prog="zap",
        description="Create, expire and replicate ZFS snapshots.",
    )
    parser.add_argument(
        "-v", "-version", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True

    snap = subparsers.add_parser("snap", aliases=["snapshot"], help="create snapshots")
    snap.add_argument("-D", dest="forbid_degraded", action="store_true", help="not when the pool is DEGRADED")
    snap.add_argument("-L", dest="forbid_resilver", action="store_true", help="not while resilvering")
    snap.add_argument("-S", dest="forbid_scrub", action="store_true", help="not while scrubbing")
    _add_common(snap)
    snap.add_argument("ttl", help="time to live, e.g. 1d, 2w, 6m, 1y")
    snap.add_argument("targets", nargs=argparse.REMAINDER, help="[[-r] dataset]...")
    snap.set_defaults(handler=run_snap)

    # -h selects the origin host, so help is only available as --help
    rep = subparsers.add_parser("rep", aliases=["replicate"], help="replicate snapshots", add_help=False)
    rep.add_argument("--help", action="help", help="show this help message and exit")
    rep.add_argument("-C", dest="uncompressed", action="store_true", help="do not send compressed")
    rep.add_argument("-D", dest="forbid_degraded", action="store_true", help="not when the pool is DEGRADED")
    rep.add_argument("-F", dest="force", action="store_true", help="force receive, discarding remote changes")
    rep.add_argument("-L", dest="forbid_resilver", action="store_true", help="not while resilvering")
    rep.add_argument("-S", dest="forbid_scrub", action="store_true", help="not while scrubbing")
    rep.add_argument("-h", dest="origin_host", metavar="host", help="replicate snapshots created by host")
    _add_common(rep)
    rep.add_argument(
        "targets", nargs=argparse.REMAINDER, help="[[user@]host:]parent_dataset [-r] dataset..."
    )
    rep.set_defaults(handler=run_rep)

    destroy = subparsers.add_parser("destroy", help="destroy expired snapshots")
    destroy.add_argument("-D", dest="allow_degraded", action="store_true", help="even when the pool is DEGRADED")
    destroy.add_argument("-l", dest="allow_resilver", action="store_true", help="even while resilvering")
    destroy.add_argument("-s", dest="allow_scrub", action="store_true", help="even while scrubbing")
    _add_common(destroy)
    destroy.add_argument("hosts", nargs="*", metavar="host[,host]...", help="origin hosts")
    destroy.set_defaults(handler=run_destroy)

    return parser


def run_snap(args: argparse.Namespace, zfs: ZfsClient, context: RunContext) -> None:
    ttl = parse_ttl(args.ttl)
    targets = parse_targets(args.targets)
    policy = HealthPolicy.for_creation(
        forbid_degraded=args.forbid_degraded,
        forbid_resilver=args.forbid_resilver,
        forbid_scrub=args.forbid_scrub,
    )
    SnapshotCreationService(zfs, context).create(ttl, targets, policy)


def run_rep(args: argparse.Namespace, zfs: ZfsClient, context: RunContext) -> None:
    destination = None
    targets: List[Tuple[str, bool]] = []
    if args.targets:
        destination = args.targets[0]
        targets = parse_targets(args.targets[1:])
        if not targets:
            raise UsageError(f"no dataset given for destination '{destination}'")
    options = ReplicationOptions(
        compressed=not args.uncompressed,
        force=args.force,
        origin_host=args.origin_host,
        policy=HealthPolicy.for_creation(
            forbid_degraded=args.forbid_degraded,
            forbid_resilver=args.forbid_resilver,
            forbid_scrub=args.forbid_scrub,
        ),
    )
    ReplicationService(zfs, context).replicate(destination, targets, options)


def run_destroy(args: argparse.Namespace, zfs: ZfsClient, context: RunContext) -> None:
    policy = HealthPolicy.for_destruction(
        allow_degraded=args.allow_degraded,
        allow_resilver=args.allow_resilver,
        allow_scrub=args.allow_scrub,
    )
    DestructionService(zfs, context).destroy_expired(parse_hosts(args.hosts), policy)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run zap and return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"FATAL: invalid ZAP_* environment: {e}", file=sys.stderr)
        return 1

    setup_logging(verbose=args.verbose, settings=settings)

    try:
        context = RunContext.create(dry_run=args.dry_run)
        validate_environment(settings)
        zfs = ZfsClient.from_settings(settings, dry_run=context.dry_run)
        args.handler(args, zfs, context)
    except UsageError as e:
        parser.error(str(e))
    except (ConfigurationError, InvalidTtl, CommandError) as e:
        logger.critical(str(e))
        return 1
    return 0
