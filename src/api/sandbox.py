"""Sandbox pool stats and per-agent policy endpoints."""

from typing import Any, Dict, List

from fastapi import APIRouter
import structlog

from ..dependencies.services import PolicyStoreDep, PoolManagerDep
from ..models.errors import ResourceNotFoundError
from ..models.policy import AgentPolicyRecord, AgentPolicyUpdate, ResourceLimitsResponse
from ..models.pool import PoolConfig, PoolStats

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/sandbox", tags=["sandbox"])


@router.get("/stats", summary="Sandbox pool statistics")
async def get_stats(manager: PoolManagerDep) -> Dict[str, Any]:
    """Pool counters; reports an empty, disabled pool when sandboxing is off."""
    if manager is None:
        return PoolStats(
            total=0,
            warm=0,
            assigned=0,
            max_containers=PoolConfig.from_settings().max_containers,
            enabled=False,
        ).to_dict()
    return manager.get_pool_stats().to_dict()


@router.get("/policies", response_model=List[AgentPolicyRecord])
async def list_policies(store: PolicyStoreDep):
    """List all stored agent policy overrides."""
    return await store.list_agent_policies()


@router.get("/policies/{agent_id}", response_model=ResourceLimitsResponse)
async def get_policy(agent_id: str, store: PolicyStoreDep):
    """Effective limits for an agent (defaults when it has no override)."""
    limits = await store.get_agent_policy(agent_id)
    return ResourceLimitsResponse(**limits.to_dict())


@router.put("/policies/{agent_id}", response_model=ResourceLimitsResponse)
async def set_policy(agent_id: str, data: AgentPolicyUpdate, store: PolicyStoreDep):
    """Create or update an agent's override; omitted fields keep their value."""
    limits = await store.set_agent_policy(agent_id, data)
    return ResourceLimitsResponse(**limits.to_dict())


@router.delete("/policies/{agent_id}")
async def delete_policy(agent_id: str, store: PolicyStoreDep) -> Dict[str, bool]:
    """Remove an agent's override so it falls back to the defaults."""
    if not await store.remove_agent_policy(agent_id):
        raise ResourceNotFoundError("Sandbox policy", agent_id)
    return {"ok": True}
