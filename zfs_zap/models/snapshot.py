"""Snapshot models decoded from zap snapshot names."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

TTL_PATTERN = r"[0-9]{1,4}[dwmy]"

TTL_UNIT_SECONDS = {
    "d": 86400,
    "w": 604800,
    "m": 2592000,
    "y": 31536000,
}


class Ttl(BaseModel):
    """A TTL class such as ``1d`` or ``3w``.

    The token is kept as written so that names round-trip exactly.
    """

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., description="TTL token, 1-4 digits and a unit in d/w/m/y")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Validate the TTL grammar."""
        if not re.fullmatch(TTL_PATTERN, v):
            raise ValueError(f"invalid TTL '{v}'")
        return v

    @property
    def count(self) -> int:
        return int(self.token[:-1])

    @property
    def unit(self) -> str:
        return self.token[-1]

    def __str__(self) -> str:
        return self.token


class ZapName(BaseModel):
    """The (origin host, creation instant, TTL) triple carried by a zap name."""

    model_config = ConfigDict(frozen=True)

    origin_host: str = Field(..., description="Short hostname of the creating system")
    created: datetime = Field(..., description="Creation instant, with UTC offset")
    ttl: Ttl = Field(..., description="TTL class")

    @field_validator("created")
    @classmethod
    def validate_created(cls, v: datetime) -> datetime:
        """Names carry an offset, so the instant must be timezone-aware."""
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("creation instant must be timezone-aware")
        return v


class Snapshot(BaseModel):
    """A zap-owned snapshot (or the bookmark of one) of a dataset."""

    model_config = ConfigDict(frozen=True)

    dataset: str = Field(..., description="Dataset the snapshot belongs to")
    name: str = Field(..., description="Name part after '@' or '#'")
    zap: ZapName = Field(..., description="Decoded name")

    @property
    def pool(self) -> str:
        return self.dataset.split("/", 1)[0]

    @property
    def full_name(self) -> str:
        return f"{self.dataset}@{self.name}"

    @property
    def bookmark_name(self) -> str:
        return f"{self.dataset}#{self.name}"

    @property
    def created(self) -> datetime:
        return self.zap.created

    def __str__(self) -> str:
        return self.full_name
