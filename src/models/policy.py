"""Per-agent sandbox policy models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .sandbox import NetworkPolicy


class AgentPolicyUpdate(BaseModel):
    """Partial resource-limit override for one agent.

    Fields left as None keep their current (or default) value.
    """

    model_config = ConfigDict(use_enum_values=True)

    cpu_limit: Optional[float] = Field(None, gt=0, le=64)
    memory_limit_mb: Optional[int] = Field(None, ge=16, le=65536)
    network_policy: Optional[NetworkPolicy] = None
    timeout_seconds: Optional[int] = Field(None, ge=0, le=86400)


class AgentPolicyRecord(BaseModel):
    """Stored policy override row."""

    id: str
    agent_id: str
    image: str
    cpu_limit: float
    memory_limit_mb: int
    network_policy: NetworkPolicy
    timeout_seconds: int
    read_only_mounts: List[str] = Field(default_factory=list)
    work_dir: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ResourceLimitsResponse(BaseModel):
    """Effective limits for an agent."""

    cpu_limit: float
    memory_limit_mb: int
    network_policy: NetworkPolicy
    timeout_seconds: int
    pids_limit: int
    storage_limit_mb: int
