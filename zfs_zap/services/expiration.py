"""Expiration of zap snapshots."""

from datetime import datetime
from typing import Union

from zfs_zap.models.snapshot import TTL_UNIT_SECONDS, Ttl

Instant = Union[datetime, int, float]


class ExpirationError(ValueError):
    """Raised when expiration cannot be decided unambiguously."""


def ttl_seconds(ttl: Ttl) -> int:
    """
    Nominal length of a TTL class in seconds.

    Months are 30 days and years 365 days; no calendar arithmetic.

    Raises:
        ExpirationError: If the TTL is not a positive duration
    """
    seconds = ttl.count * TTL_UNIT_SECONDS[ttl.unit]
    if seconds <= 0:
        raise ExpirationError(f"TTL '{ttl}' is not a positive duration")
    return seconds


def _epoch(instant: Instant) -> float:
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            raise ExpirationError(f"instant {instant.isoformat()} has no UTC offset")
        return instant.timestamp()
    return float(instant)


def expires_at(created: Instant, ttl: Ttl) -> float:
    """
    Epoch second after which a snapshot is expired.

    Raises:
        ExpirationError: If the creation instant is not a positive epoch time
    """
    epoch = _epoch(created)
    if epoch <= 0:
        raise ExpirationError(f"creation time {epoch} is not a positive epoch time")
    return epoch + ttl_seconds(ttl)


def is_expired(now: Instant, created: Instant, ttl: Ttl) -> bool:
    """
    Whether a snapshot created at ``created`` with TTL ``ttl`` has expired at ``now``.

    Expired means strictly past the expiration instant.

    Raises:
        ExpirationError: If ``created`` or ``ttl`` cannot be turned into a positive duration
    """
    return _epoch(now) > expires_at(created, ttl)
