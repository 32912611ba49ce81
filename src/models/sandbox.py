"""Sandbox container data models.

ResourceLimits is what the policy store hands out and what the container
runtime consumes. SandboxConfig is the full creation-time description of a
single container and is rebuilt for every creation.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class NetworkPolicy(str, Enum):
    """Network access granted to a container."""

    NONE = "none"
    HOST = "host"
    RESTRICTED = "restricted"


class ContainerStatus(str, Enum):
    """Container state as reported by the runtime."""

    CREATING = "creating"
    READY = "ready"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class ResourceLimits:
    """Enforced per-container resource and network limits."""

    cpu_limit: float = 1.0  # cores, fractional
    memory_limit_mb: int = 512
    network_policy: NetworkPolicy = NetworkPolicy.RESTRICTED
    timeout_seconds: int = 600  # 0 = unlimited
    pids_limit: int = 100
    storage_limit_mb: int = 1024

    def __post_init__(self):
        if not isinstance(self.network_policy, NetworkPolicy):
            object.__setattr__(
                self, "network_policy", NetworkPolicy(self.network_policy)
            )

    def merge(self, overrides: Dict[str, Any]) -> "ResourceLimits":
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_limit": self.cpu_limit,
            "memory_limit_mb": self.memory_limit_mb,
            "network_policy": self.network_policy.value,
            "timeout_seconds": self.timeout_seconds,
            "pids_limit": self.pids_limit,
            "storage_limit_mb": self.storage_limit_mb,
        }


DEFAULT_RESOURCE_LIMITS = ResourceLimits()


@dataclass
class SandboxConfig:
    """Creation-time specification for one container.

    ``agent_id`` is empty for warm-pool containers that are not yet bound
    to an agent. ``work_dir`` is a host path bound read-write into the
    container at /workspace.
    """

    id: str
    agent_id: str
    image: str
    cpu_limit: float
    memory_limit_mb: int
    network_policy: NetworkPolicy
    timeout_seconds: int
    read_only_mounts: List[str] = field(default_factory=list)
    work_dir: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_limits(
        cls,
        sandbox_id: str,
        agent_id: str,
        image: str,
        limits: ResourceLimits,
        work_dir: Optional[str] = None,
        read_only_mounts: Optional[List[str]] = None,
    ) -> "SandboxConfig":
        """Build a config carrying the given limits."""
        return cls(
            id=sandbox_id,
            agent_id=agent_id,
            image=image,
            cpu_limit=limits.cpu_limit,
            memory_limit_mb=limits.memory_limit_mb,
            network_policy=limits.network_policy,
            timeout_seconds=limits.timeout_seconds,
            read_only_mounts=list(read_only_mounts or []),
            work_dir=work_dir,
        )


@dataclass
class ContainerInfo:
    """Result of inspecting a container."""

    container_id: str
    status: ContainerStatus
    image: str = ""
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    pid: Optional[int] = None


@dataclass
class ExecResult:
    """Outcome of one runtime CLI invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
