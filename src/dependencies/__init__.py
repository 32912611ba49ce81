"""Dependencies package for the Sandbox Pool service."""

from .services import (
    get_pool_manager,
    set_pool_manager,
    get_policy_store,
    set_policy_store,
    PoolManagerDep,
    PolicyStoreDep,
)

__all__ = [
    "get_pool_manager",
    "set_pool_manager",
    "get_policy_store",
    "set_policy_store",
    "PoolManagerDep",
    "PolicyStoreDep",
]
