"""Replication destination model."""

import ipaddress
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

# Property value that turns replication off for a dataset
DISABLED_VALUE = "off"

USER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_.-]{0,31}$"
HOSTNAME_PATTERN = (
    r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"
)
LOOPBACK_NAMES = ("localhost", "localhost.localdomain", "ip6-localhost")


class InvalidDestination(ValueError):
    """Raised when a destination string cannot be used for replication."""


def is_loopback(host: str) -> bool:
    """Whether ``host`` names this machine."""
    if host.lower() in LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


class Destination(BaseModel):
    """Where a dataset is replicated to: ``[[user@]host:]parent_dataset``.

    A destination without a host (or with a loopback host) is local and is
    reached without ssh.
    """

    model_config = ConfigDict(frozen=True)

    user: Optional[str] = Field(default=None, description="ssh user name")
    host: Optional[str] = Field(default=None, description="ssh host, None for local")
    parent: str = Field(default="", description="Parent dataset on the destination")
    disabled: bool = Field(default=False, description="Replication turned off")

    @field_validator("user")
    @classmethod
    def validate_user(cls, v: Optional[str]) -> Optional[str]:
        """Validate the user name."""
        if v is not None and not re.match(USER_PATTERN, v):
            raise ValueError(f"invalid user name '{v}'")
        return v

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: Optional[str]) -> Optional[str]:
        """Validate host is a valid IP address or hostname."""
        if v is None:
            return v
        try:
            ipaddress.ip_address(v)
            return v
        except ValueError:
            pass
        if not re.match(HOSTNAME_PATTERN, v):
            raise ValueError(f"invalid host '{v}'")
        return v

    @field_validator("parent")
    @classmethod
    def validate_parent(cls, v: str) -> str:
        """Validate the parent dataset path."""
        if v and (v.startswith("/") or v.endswith("/") or "//" in v):
            raise ValueError(f"invalid parent dataset '{v}'")
        if any(c in v for c in "@#\t\n"):
            raise ValueError(f"invalid parent dataset '{v}'")
        return v

    @model_validator(mode="before")
    @classmethod
    def localize_loopback(cls, data: Any) -> Any:
        """A loopback host is this machine, reached without ssh."""
        host = data.get("host") if isinstance(data, dict) else None
        if isinstance(host, str) and host and is_loopback(host):
            return {**data, "host": None, "user": None}
        return data

    @model_validator(mode="after")
    def validate_cross_fields(self) -> "Destination":
        """Require a parent unless disabled."""
        if self.disabled:
            return self
        if not self.parent:
            raise ValueError("parent dataset is empty")
        if self.user is not None and self.host is None:
            raise ValueError("user given without host")
        return self

    @classmethod
    def parse(cls, value: str) -> "Destination":
        """
        Parse a destination string.

        Args:
            value: ``[[user@]host:]parent_dataset`` or ``off``

        Returns:
            The destination

        Raises:
            InvalidDestination: If the string is malformed
        """
        text = value.strip()
        if text == DISABLED_VALUE:
            return cls(disabled=True)

        user = None
        host = None
        rest = text
        if "@" in rest.split(":", 1)[0]:
            user, rest = rest.split("@", 1)
        if rest.startswith("["):
            end = rest.find("]")
            if end == -1 or rest[end + 1 : end + 2] != ":":
                raise InvalidDestination(f"invalid destination '{value}'")
            host, path = rest[1:end], rest[end + 2 :]
        elif ":" in rest:
            host, path = rest.split(":", 1)
            if not host:
                raise InvalidDestination(f"invalid destination '{value}': empty host")
        else:
            path = rest

        try:
            return cls(user=user, host=host, parent=path)
        except ValidationError as exc:
            messages = "; ".join(error["msg"] for error in exc.errors())
            raise InvalidDestination(f"invalid destination '{value}': {messages}") from exc

    @property
    def is_local(self) -> bool:
        return self.host is None

    def remote_dataset(self, dataset: str) -> str:
        """Name of the copy of ``dataset`` under the parent (the pool component is dropped)."""
        if "/" not in dataset:
            return self.parent
        return f"{self.parent}/{dataset.split('/', 1)[1]}"

    def __str__(self) -> str:
        if self.disabled:
            return DISABLED_VALUE
        if self.host is None:
            return self.parent
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.user:
            return f"{self.user}@{host}:{self.parent}"
        return f"{host}:{self.parent}"
