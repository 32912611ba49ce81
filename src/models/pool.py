"""Container pool data models.

A PoolEntry tracks one live container. Entries with no session are warm and
ready to be assigned; assigned entries are never returned to the warm state,
they are destroyed and replaced.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PoolEntry:
    """One container owned by the pool."""

    container_id: str
    sandbox_id: str
    session_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_warm(self) -> bool:
        return self.session_id is None

    def assign(self, session_id: str) -> None:
        """Bind this entry to a session."""
        self.session_id = session_id
        self.assigned_at = _utcnow()

    def idle_ms(self, now: Optional[datetime] = None) -> float:
        """Milliseconds since assignment (0 for warm entries)."""
        if self.assigned_at is None:
            return 0.0
        now = now or _utcnow()
        return (now - self.assigned_at).total_seconds() * 1000

    def __hash__(self):
        return hash(self.container_id)

    def __eq__(self, other):
        if not isinstance(other, PoolEntry):
            return False
        return self.container_id == other.container_id


@dataclass(frozen=True)
class PoolConfig:
    """Process-wide pool tuning, fixed at manager construction."""

    warm_pool_size: int = 2  # Unassigned containers kept ready
    max_containers: int = 10  # Hard cap on live containers
    idle_timeout_ms: int = 300_000
    default_image: str = "agent-sandbox:latest"

    @classmethod
    def from_settings(cls) -> "PoolConfig":
        """Create pool config from application settings."""
        from ..config import settings

        resources = settings.resources
        return cls(
            warm_pool_size=resources.warm_pool_size,
            max_containers=resources.max_containers,
            idle_timeout_ms=resources.idle_timeout_ms,
            default_image=resources.default_image,
        )


DEFAULT_POOL_CONFIG = PoolConfig()


@dataclass
class PoolStats:
    """Container pool statistics for monitoring."""

    total: int = 0
    warm: int = 0
    assigned: int = 0
    max_containers: int = 0
    enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "warm": self.warm,
            "assigned": self.assigned,
            "max_containers": self.max_containers,
            "enabled": self.enabled,
        }
