"""Per-invocation run context."""

import socket
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from zfs_zap.config.validation import validate_hostname


def short_hostname() -> str:
    """Local hostname without the domain part."""
    return socket.gethostname().split(".", 1)[0]


def current_instant() -> datetime:
    """Now, in local time with its UTC offset, truncated to whole seconds."""
    return datetime.now().astimezone().replace(microsecond=0)


class RunContext(BaseModel):
    """Values fixed once at startup and shared by every operation of a run.

    All snapshots created by one invocation carry ``now`` so a batch shares a
    single timestamp.
    """

    model_config = ConfigDict(frozen=True)

    hostname: str = Field(..., description="Local short hostname")
    now: datetime = Field(..., description="Creation instant of this run")
    dry_run: bool = Field(default=False, description="Log mutating commands instead of running them")

    @classmethod
    def create(
        cls,
        dry_run: bool = False,
        hostname: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "RunContext":
        """
        Build the context for this invocation.

        Raises:
            ConfigurationError: If the local hostname cannot be determined
        """
        host = validate_hostname(short_hostname() if hostname is None else hostname)
        return cls(hostname=host, now=now or current_instant(), dry_run=dry_run)
