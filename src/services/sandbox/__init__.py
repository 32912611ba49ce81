"""Container sandbox management.

This package provides container-based sandbox management:
- runtime.py: Container runtime CLI adapter (create, start, stop, inspect)
- policy.py: Per-agent resource-limit overrides in SQLite
- pool.py: Warm container pool and session assignment
"""

from .runtime import ContainerRuntime
from .policy import PolicyStore
from .pool import SandboxPoolManager

__all__ = [
    "ContainerRuntime",
    "PolicyStore",
    "SandboxPoolManager",
]
