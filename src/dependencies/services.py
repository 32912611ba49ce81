"""Service dependency injection for the Sandbox Pool service."""

# Standard library imports
from typing import Annotated, Optional

# Third-party imports
from fastapi import Depends
import structlog

# Local application imports
from ..models.errors import ServiceUnavailableError
from ..services.sandbox.policy import PolicyStore
from ..services.sandbox.pool import SandboxPoolManager

logger = structlog.get_logger(__name__)

# Global references (set by main.py lifespan)
_pool_manager: Optional[SandboxPoolManager] = None
_policy_store: Optional[PolicyStore] = None


def set_pool_manager(manager: Optional[SandboxPoolManager]) -> None:
    """Set the global pool manager reference.

    Called by main.py after the manager is initialized in lifespan.
    """
    global _pool_manager
    _pool_manager = manager
    if manager is not None:
        logger.info("Sandbox pool manager registered with dependency injection")


def get_pool_manager() -> Optional[SandboxPoolManager]:
    """Get the pool manager instance (may be None if sandboxing is off)."""
    return _pool_manager


def set_policy_store(store: Optional[PolicyStore]) -> None:
    global _policy_store
    _policy_store = store
    if store is not None:
        logger.info("Policy store registered with dependency injection")


def get_policy_store() -> PolicyStore:
    """Get the policy store instance.

    Raises:
        ServiceUnavailableError: If the store was never opened
    """
    if _policy_store is None:
        raise ServiceUnavailableError("Policy store")
    return _policy_store


# Type aliases for dependency injection
PoolManagerDep = Annotated[Optional[SandboxPoolManager], Depends(get_pool_manager)]
PolicyStoreDep = Annotated[PolicyStore, Depends(get_policy_store)]
