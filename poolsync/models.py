from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .db import utc_now
from .settings import settings

if TYPE_CHECKING:
    from .k8s import KubeCredentials


@dataclass(frozen=True, order=True)
class Endpoint:
    address: str
    port: int

    @classmethod
    def parse(cls, raw: str) -> "Endpoint":
        """Parse ``address:port``; IPv6 addresses may be bracketed (``[::1]:80``)."""
        host, sep, port = raw.strip().rpartition(":")
        if not sep or not host:
            raise ValueError(f"Invalid endpoint {raw!r}, expected address:port")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        return cls(address=host, port=int(port))

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


class InstanceState(str, Enum):
    POLLING = "polling"
    UPDATE_PENDING = "update_pending"
    REMOVED = "removed"


@dataclass(frozen=True)
class PoolConfig:
    load_balancing_mode: str = "round-robin"
    monitor: str | None = None


def effective_poll_interval(requested: float | None) -> float:
    """Clamp a requested poll interval (seconds).

    Unset or 0 falls back to the default; anything shorter than the minimum is raised to it.
    """
    if not requested:
        return float(settings.default_poll_interval_s)
    return float(max(settings.min_poll_interval_s, requested))


@dataclass(frozen=True)
class InstanceConfig:
    name: str
    endpoint: str  # Kubernetes API base URL
    namespace: str
    service_name: str
    pool: str
    pool_config: PoolConfig = field(default_factory=PoolConfig)
    poll_interval_s: float = field(default_factory=lambda: effective_poll_interval(None))
    credentials: "KubeCredentials | None" = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class InstanceRecord:
    """Registry snapshot of one managed pool.

    ``token`` identifies a single registration lifetime of ``name``; a name that
    is removed and registered again gets a new token.
    """

    name: str
    pool: str
    state: InstanceState
    config: InstanceConfig
    token: int
    updated_at: str = field(default_factory=utc_now)
