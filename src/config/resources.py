"""Resource limits configuration."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResourcesConfig(BaseSettings):
    """Default per-container resource limits and pool sizing."""

    model_config = SettingsConfigDict(env_prefix="sandbox_", extra="ignore")

    # Container Limits
    cpu_limit: float = Field(default=1.0, gt=0, le=64)
    memory_limit_mb: int = Field(default=512, ge=16, le=65536)
    network_policy: Literal["none", "host", "restricted"] = Field(default="restricted")
    timeout_seconds: int = Field(default=600, ge=0, le=86400)
    pids_limit: int = Field(default=100, ge=1, le=65536)
    storage_limit_mb: int = Field(default=1024, ge=1)

    # Pool Sizing
    warm_pool_size: int = Field(default=2, ge=0, le=100)
    max_containers: int = Field(default=10, ge=1, le=1000)
    idle_timeout_ms: int = Field(default=300_000, ge=1000)
    default_image: str = Field(default="agent-sandbox:latest")

    def default_limits(self):
        """Build the system default ResourceLimits from these settings."""
        from ..models.sandbox import ResourceLimits

        return ResourceLimits(
            cpu_limit=self.cpu_limit,
            memory_limit_mb=self.memory_limit_mb,
            network_policy=self.network_policy,
            timeout_seconds=self.timeout_seconds,
            pids_limit=self.pids_limit,
            storage_limit_mb=self.storage_limit_mb,
        )
