"""Pytest configuration and shared fixtures."""

import itertools
import os
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Set test environment before importing config
os.environ.setdefault("POLICY_DB_PATH", ":memory:")
os.environ.setdefault("LOG_FORMAT", "console")

from src.models.pool import PoolConfig
from src.models.sandbox import ContainerInfo, ContainerStatus
from src.services.sandbox.policy import PolicyStore
from src.services.sandbox.pool import SandboxPoolManager
from src.services.sandbox.runtime import ContainerRuntime


@pytest.fixture
def mock_runtime():
    """Mock ContainerRuntime with an available runtime and sequential IDs."""
    runtime = AsyncMock(spec=ContainerRuntime)
    counter = itertools.count(1)

    async def create_container(config, limits=None):
        return f"container-{next(counter):04d}"

    async def get_container_status(container_id):
        return ContainerInfo(container_id=container_id, status=ContainerStatus.RUNNING)

    runtime.is_docker_available.return_value = True
    runtime.create_container.side_effect = create_container
    runtime.start_container.return_value = None
    runtime.stop_container.return_value = None
    runtime.remove_container.return_value = None
    runtime.get_container_status.side_effect = get_container_status
    runtime.list_sandbox_containers.return_value = []

    return runtime


@pytest_asyncio.fixture
async def policy_store():
    """In-memory PolicyStore with the built-in default limits."""
    store = PolicyStore(db_path=":memory:")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def pool_config():
    """Pool config with the default sizing (warm 2, max 10)."""
    return PoolConfig(
        warm_pool_size=2,
        max_containers=10,
        idle_timeout_ms=300_000,
        default_image="agent-sandbox:latest",
    )


@pytest_asyncio.fixture
async def pool_manager(policy_store, mock_runtime, pool_config):
    """Uninitialized SandboxPoolManager over the mocked runtime.

    The maintenance interval is long enough that tests drive maintenance
    explicitly through run_maintenance().
    """
    manager = SandboxPoolManager(
        policy_store,
        runtime=mock_runtime,
        pool_config=pool_config,
        maintenance_interval=3600,
    )
    yield manager
    await manager.shutdown()

