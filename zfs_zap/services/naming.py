"""Encoding and decoding of zap snapshot names.

A zap snapshot is named ``<dataset>@ZAP_<host>_<timestamp>--<ttl>`` where the
timestamp is ``%Y-%m-%dT%H:%M:%S%z`` with ``+`` written as ``p`` so that the
name stays safe for filenames and shells. Bookmarks use the same name part
after ``#``. Names that do not match are not zap's and are never touched.
"""

import re
from datetime import datetime
from typing import Collection, Optional, Union

from pydantic import ValidationError

from zfs_zap.models.snapshot import TTL_PATTERN, Snapshot, Ttl, ZapName

PREFIX = "ZAP_"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

NAME_RE = re.compile(
    r"^ZAP_(?P<host>[^@#/]+)_"
    r"(?P<timestamp>[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}[p-][0-9]{4})"
    rf"--(?P<ttl>{TTL_PATTERN})$"
)


class InvalidTtl(ValueError):
    """Raised when a TTL token does not match the TTL grammar."""


class MalformedName(ValueError):
    """Raised when a name is not a zap name (or not one of the selected hosts)."""


class InvalidTimestamp(MalformedName):
    """Raised when a name has zap structure but its timestamp is not a real instant."""


def parse_ttl(text: str) -> Ttl:
    """
    Parse a TTL token such as ``1d``, ``3w``, ``6m`` or ``1y``.

    Raises:
        InvalidTtl: If the token does not match the grammar
    """
    try:
        return Ttl(token=text)
    except ValidationError as exc:
        raise InvalidTtl(f"invalid TTL '{text}', expected 1-4 digits followed by d, w, m or y") from exc


def format_timestamp(created: datetime) -> str:
    """Encode an aware datetime for use in a name."""
    if created.tzinfo is None:
        raise ValueError("creation instant must be timezone-aware")
    return created.strftime(TIMESTAMP_FORMAT).replace("+", "p")


def parse_timestamp(text: str) -> datetime:
    """
    Decode a name timestamp.

    Raises:
        InvalidTimestamp: If the text is not a valid instant
    """
    try:
        return datetime.strptime(text.replace("p", "+"), TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise InvalidTimestamp(f"invalid timestamp '{text}'") from exc


def encode(origin_host: str, created: datetime, ttl: Union[Ttl, str]) -> str:
    """
    Build the name part of a zap snapshot.

    Args:
        origin_host: Short hostname of the creating system
        created: Creation instant (timezone-aware)
        ttl: TTL class

    Returns:
        ``ZAP_<host>_<timestamp>--<ttl>``
    """
    if not isinstance(ttl, Ttl):
        ttl = parse_ttl(ttl)
    return f"{PREFIX}{origin_host}_{format_timestamp(created)}--{ttl}"


def _name_part(name: str) -> str:
    for separator in ("@", "#"):
        if separator in name:
            return name.split(separator, 1)[1]
    return name


def decode(name: str, hosts: Optional[Collection[str]] = None) -> ZapName:
    """
    Decode a zap name.

    Args:
        name: A name part, or a full ``dataset@name`` / ``dataset#name``
        hosts: If given, only names created by one of these hosts are accepted

    Returns:
        The decoded name

    Raises:
        MalformedName: If the name is not a zap name of one of ``hosts``
        InvalidTimestamp: If the name matches but its timestamp is invalid
    """
    match = NAME_RE.match(_name_part(name))
    if match is None:
        raise MalformedName(f"'{name}' is not a zap name")

    host = match.group("host")
    if hosts is not None and host not in hosts:
        raise MalformedName(f"'{name}' was not created by {', '.join(sorted(hosts))}")

    created = parse_timestamp(match.group("timestamp"))
    return ZapName(origin_host=host, created=created, ttl=Ttl(token=match.group("ttl")))


def parse_snapshot(full_name: str, hosts: Optional[Collection[str]] = None) -> Snapshot:
    """
    Decode a full snapshot or bookmark name into a :class:`Snapshot`.

    Raises:
        MalformedName: If the name has no dataset part or is not a zap name
    """
    match = re.match(r"^(?P<dataset>[^@#]+)[@#](?P<name>.+)$", full_name)
    if match is None:
        raise MalformedName(f"'{full_name}' is not a snapshot or bookmark name")
    name = match.group("name")
    return Snapshot(dataset=match.group("dataset"), name=name, zap=decode(name, hosts))
