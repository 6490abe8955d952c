"""Pool health models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PoolState(str, Enum):
    """Pool states reported by ``zpool status``."""

    ONLINE = "ONLINE"
    DEGRADED = "DEGRADED"
    FAULTED = "FAULTED"
    OFFLINE = "OFFLINE"
    REMOVED = "REMOVED"
    UNAVAIL = "UNAVAIL"
    SUSPENDED = "SUSPENDED"


class PoolStatus(BaseModel):
    """Health of a pool at the time it was queried."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Pool name")
    state: str = Field(..., description="Raw state string, e.g. ONLINE or DEGRADED")
    scrubbing: bool = Field(default=False, description="A scrub is in progress")
    resilvering: bool = Field(default=False, description="A resilver is in progress")

    def is_safe(self, allow_degraded: bool) -> bool:
        """Whether the pool state allows an operation at all.

        Unknown states are unsafe.
        """
        if self.state == PoolState.ONLINE.value:
            return True
        if self.state == PoolState.DEGRADED.value:
            return allow_degraded
        return False


class HealthPolicy(BaseModel):
    """Which pool conditions an operation tolerates."""

    model_config = ConfigDict(frozen=True)

    allow_degraded: bool = Field(..., description="Proceed on a DEGRADED pool")
    allow_scrub: bool = Field(..., description="Proceed while a scrub is running")
    allow_resilver: bool = Field(..., description="Proceed while a resilver is running")

    @classmethod
    def for_creation(
        cls, forbid_degraded: bool = False, forbid_resilver: bool = False, forbid_scrub: bool = False
    ) -> "HealthPolicy":
        """Creation and replication tolerate everything but a broken pool by default."""
        return cls(
            allow_degraded=not forbid_degraded,
            allow_scrub=not forbid_scrub,
            allow_resilver=not forbid_resilver,
        )

    @classmethod
    def for_destruction(
        cls, allow_degraded: bool = False, allow_resilver: bool = False, allow_scrub: bool = False
    ) -> "HealthPolicy":
        """Destruction refuses degraded, scrubbing and resilvering pools by default."""
        return cls(
            allow_degraded=allow_degraded,
            allow_scrub=allow_scrub,
            allow_resilver=allow_resilver,
        )

    def refusal_reason(self, status: PoolStatus) -> Optional[str]:
        """Why ``status`` does not satisfy this policy, or None if it does."""
        if not status.is_safe(self.allow_degraded):
            return f"pool {status.name} is {status.state}"
        if status.scrubbing and not self.allow_scrub:
            return f"pool {status.name} is scrubbing"
        if status.resilvering and not self.allow_resilver:
            return f"pool {status.name} is resilvering"
        return None
