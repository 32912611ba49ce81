"""Unit tests for SandboxPoolManager."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from src.config import settings
from src.models.errors import CapacityError, ExternalServiceError, ValidationError
from src.models.pool import PoolConfig
from src.models.sandbox import ContainerInfo, ContainerStatus, NetworkPolicy
from src.services.sandbox.pool import SandboxPoolManager


async def drain_refills(manager: SandboxPoolManager) -> None:
    """Wait for background refills scheduled by assignments."""
    while manager._refill_tasks:
        await asyncio.gather(*list(manager._refill_tasks), return_exceptions=True)


@pytest.fixture
def no_warm_config():
    return PoolConfig(warm_pool_size=0, max_containers=2)


class TestInitialize:
    """Test pool start-up."""

    @pytest.mark.asyncio
    async def test_initialize_fills_warm_pool(self, pool_manager, mock_runtime):
        """Test initialize creates warm_pool_size warm containers."""
        assert await pool_manager.initialize() is True

        stats = pool_manager.get_pool_stats()
        assert stats.enabled is True
        assert stats.warm == 2
        assert stats.total == 2
        assert stats.assigned == 0
        assert mock_runtime.create_container.await_count == 2
        mock_runtime.list_sandbox_containers.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, pool_manager, mock_runtime):
        """Test a second initialize does not create more containers."""
        await pool_manager.initialize()
        assert await pool_manager.initialize() is True
        assert mock_runtime.create_container.await_count == 2

    @pytest.mark.asyncio
    async def test_default_maintenance_interval(self, policy_store, mock_runtime):
        """Test the interval falls back to the runtime settings group."""
        manager = SandboxPoolManager(policy_store, runtime=mock_runtime)

        assert (
            manager._maintenance_interval
            == settings.runtime.maintenance_interval_seconds
        )

    @pytest.mark.asyncio
    async def test_initialize_runtime_unavailable(self, pool_manager, mock_runtime):
        """Test the pool stays disabled when the runtime does not respond."""
        mock_runtime.is_docker_available.return_value = False

        assert await pool_manager.initialize() is False
        assert pool_manager.is_enabled() is False
        assert pool_manager.get_pool_stats().to_dict() == {
            "total": 0,
            "warm": 0,
            "assigned": 0,
            "max_containers": 10,
            "enabled": False,
        }
        mock_runtime.create_container.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_initialize_purges_stale_containers(self, pool_manager, mock_runtime):
        """Test leftover containers from a previous process are removed."""
        mock_runtime.list_sandbox_containers.return_value = ["stale-1", "stale-2"]

        await pool_manager.initialize()

        removed = [c.args[0] for c in mock_runtime.remove_container.await_args_list]
        assert removed == ["stale-1", "stale-2"]

    @pytest.mark.asyncio
    async def test_initialize_survives_stale_cleanup_failure(
        self, pool_manager, mock_runtime
    ):
        """Test a failing stale-container listing does not block start-up."""
        mock_runtime.list_sandbox_containers.side_effect = RuntimeError("boom")

        assert await pool_manager.initialize() is True
        assert pool_manager.get_pool_stats().warm == 2

    @pytest.mark.asyncio
    async def test_warm_creation_failure_is_logged_not_raised(
        self, pool_manager, mock_runtime
    ):
        """Test warm containers that fail to create are skipped."""
        mock_runtime.create_container.side_effect = ExternalServiceError(
            "Docker", "Failed to create container: no such image"
        )

        assert await pool_manager.initialize() is True
        assert pool_manager.get_pool_stats().total == 0
        assert pool_manager._pending == 0


class TestAssignment:
    """Test assigning containers to sessions."""

    @pytest.mark.asyncio
    async def test_assign_when_disabled_raises(self, pool_manager):
        """Test assignment before initialize fails with a not-enabled error."""
        with pytest.raises(ValidationError, match="not enabled"):
            await pool_manager.assign_container("agent-1", "session-1")

    @pytest.mark.asyncio
    async def test_assign_claims_oldest_warm_container(
        self, pool_manager, mock_runtime
    ):
        """Test the first warm container created is the first one handed out."""
        await pool_manager.initialize()

        container_id = await pool_manager.assign_container("agent-1", "session-1")

        assert container_id == "container-0001"
        mock_runtime.start_container.assert_awaited_once_with("container-0001")
        entry = pool_manager.get_container_for_session("session-1")
        assert entry.container_id == "container-0001"
        assert entry.assigned_at is not None

    @pytest.mark.asyncio
    async def test_assign_refills_warm_pool(self, pool_manager, mock_runtime):
        """Test a claimed warm container is replaced in the background."""
        await pool_manager.initialize()

        await pool_manager.assign_container("agent-1", "session-1")
        await drain_refills(pool_manager)

        stats = pool_manager.get_pool_stats()
        assert stats.warm == 2
        assert stats.assigned == 1
        assert stats.total == 3

    @pytest.mark.asyncio
    async def test_assign_same_session_returns_existing(
        self, pool_manager, mock_runtime
    ):
        """Test a session never holds two containers."""
        await pool_manager.initialize()

        first = await pool_manager.assign_container("agent-1", "session-1")
        second = await pool_manager.assign_container("agent-1", "session-1")

        assert first == second
        assert pool_manager.get_pool_stats().assigned == 1
        assert mock_runtime.start_container.await_count == 1

    @pytest.mark.asyncio
    async def test_assign_on_demand_uses_agent_policy(
        self, policy_store, mock_runtime, no_warm_config
    ):
        """Test on-demand containers carry the agent's policy and work dir."""
        await policy_store.set_agent_policy(
            "agent-1", {"cpu_limit": 2.0, "network_policy": "none"}
        )
        manager = SandboxPoolManager(
            policy_store, runtime=mock_runtime, pool_config=no_warm_config
        )
        await manager.initialize()

        try:
            await manager.assign_container("agent-1", "session-1", work_dir="/tmp/ws")

            config, limits = mock_runtime.create_container.await_args.args
            assert config.agent_id == "agent-1"
            assert config.work_dir == "/tmp/ws"
            assert config.image == "agent-sandbox:latest"
            assert limits.cpu_limit == 2.0
            assert limits.network_policy == NetworkPolicy.NONE
            assert limits.memory_limit_mb == 512
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_warm_containers_use_default_policy(
        self, pool_manager, mock_runtime
    ):
        """Test warm containers are created with no agent and default limits."""
        await pool_manager.initialize()

        config, limits = mock_runtime.create_container.await_args.args
        assert config.agent_id == ""
        assert config.work_dir is None
        assert limits == pool_manager._policy_store.default_limits

    @pytest.mark.asyncio
    async def test_start_failure_removes_container(self, pool_manager, mock_runtime):
        """Test a container that fails to start is dropped and removed."""
        await pool_manager.initialize()
        mock_runtime.start_container.side_effect = ExternalServiceError(
            "Docker", "Failed to start container"
        )

        with pytest.raises(ExternalServiceError):
            await pool_manager.assign_container("agent-1", "session-1")

        assert pool_manager.get_container_for_session("session-1") is None
        mock_runtime.remove_container.assert_awaited_with("container-0001")
        assert pool_manager.get_pool_stats().total == 1

    @pytest.mark.asyncio
    async def test_create_failure_releases_capacity(
        self, policy_store, mock_runtime, no_warm_config
    ):
        """Test a failed on-demand create does not leak a capacity slot."""
        manager = SandboxPoolManager(
            policy_store, runtime=mock_runtime, pool_config=no_warm_config
        )
        await manager.initialize()
        working_create = mock_runtime.create_container.side_effect
        mock_runtime.create_container.side_effect = ExternalServiceError(
            "Docker", "Failed to create container"
        )

        try:
            with pytest.raises(ExternalServiceError):
                await manager.assign_container("agent-1", "session-1")
            assert manager._pending == 0

            mock_runtime.create_container.side_effect = working_create
            await manager.assign_container("agent-1", "session-2")
            await manager.assign_container("agent-1", "session-3")
            assert manager.get_pool_stats().total == 2
        finally:
            await manager.shutdown()


class TestCapacity:
    """Test the max_containers ceiling."""

    @pytest.mark.asyncio
    async def test_assign_beyond_capacity_raises(
        self, policy_store, mock_runtime, no_warm_config
    ):
        """Test assignment past max_containers fails with a capacity error."""
        manager = SandboxPoolManager(
            policy_store, runtime=mock_runtime, pool_config=no_warm_config
        )
        await manager.initialize()

        try:
            await manager.assign_container("agent-1", "session-1")
            await manager.assign_container("agent-1", "session-2")

            with pytest.raises(CapacityError, match="Maximum container limit reached"):
                await manager.assign_container("agent-1", "session-3")

            assert manager.get_pool_stats().total == 2
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_assignments_respect_capacity(
        self, policy_store, mock_runtime
    ):
        """Test simultaneous on-demand creations cannot overshoot the cap."""
        config = PoolConfig(warm_pool_size=0, max_containers=3)
        counter = iter(range(1, 100))

        async def slow_create(sandbox_config, limits=None):
            await asyncio.sleep(0.01)
            return f"slow-{next(counter)}"

        mock_runtime.create_container.side_effect = slow_create
        manager = SandboxPoolManager(policy_store, runtime=mock_runtime, pool_config=config)
        await manager.initialize()

        try:
            results = await asyncio.gather(
                *(
                    manager.assign_container("agent-1", f"session-{i}")
                    for i in range(10)
                ),
                return_exceptions=True,
            )

            assigned = [r for r in results if isinstance(r, str)]
            rejected = [r for r in results if isinstance(r, CapacityError)]
            assert len(assigned) == 3
            assert len(rejected) == 7
            assert manager.get_pool_stats().total == 3
            assert mock_runtime.create_container.await_count == 3
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_refill_never_exceeds_capacity(self, policy_store, mock_runtime):
        """Test warm refills stop at max_containers."""
        config = PoolConfig(warm_pool_size=2, max_containers=3)
        manager = SandboxPoolManager(policy_store, runtime=mock_runtime, pool_config=config)
        await manager.initialize()

        try:
            for i in range(3):
                await manager.assign_container("agent-1", f"session-{i}")
                await drain_refills(manager)
                assert manager.get_pool_stats().total <= 3

            stats = manager.get_pool_stats()
            assert stats.total == 3
            assert stats.assigned == 3
            assert stats.warm == 0
        finally:
            await manager.shutdown()


    @pytest.mark.asyncio
    async def test_overlapping_refills_stop_at_warm_target(
        self, pool_manager, mock_runtime
    ):
        """Test refills in flight count toward the warm target."""
        await pool_manager.initialize()

        await pool_manager.assign_container("agent-1", "session-1")
        await pool_manager.assign_container("agent-1", "session-2")
        await drain_refills(pool_manager)

        stats = pool_manager.get_pool_stats()
        assert stats.warm == 2
        assert stats.assigned == 2
        assert mock_runtime.create_container.await_count == 4
        assert pool_manager._pending_warm == 0

    @pytest.mark.asyncio
    async def test_concurrent_fill_calls_create_target_once(self, pool_manager):
        await pool_manager.initialize()
        pool_manager._pool.clear()

        created = await asyncio.gather(pool_manager.fill_pool(), pool_manager.fill_pool())

        assert sorted(created) == [0, 2]
        assert pool_manager.get_pool_stats().warm == 2


class TestRelease:
    """Test releasing session containers."""

    @pytest.mark.asyncio
    async def test_release_destroys_container(self, pool_manager, mock_runtime):
        """Test release stops and removes the session's container."""
        await pool_manager.initialize()
        container_id = await pool_manager.assign_container("agent-1", "session-1")

        await pool_manager.release_container("session-1")

        assert pool_manager.get_container_for_session("session-1") is None
        mock_runtime.stop_container.assert_awaited_with(container_id)
        mock_runtime.remove_container.assert_awaited_with(container_id)

    @pytest.mark.asyncio
    async def test_release_unknown_session_is_noop(self, pool_manager, mock_runtime):
        """Test releasing a session with no container does nothing."""
        await pool_manager.initialize()

        await pool_manager.release_container("never-assigned")

        mock_runtime.stop_container.assert_not_awaited()
        assert pool_manager.get_pool_stats().total == 2

    @pytest.mark.asyncio
    async def test_release_survives_runtime_failure(self, pool_manager, mock_runtime):
        """Test a failing stop still drops the entry from the pool."""
        await pool_manager.initialize()
        await pool_manager.assign_container("agent-1", "session-1")
        mock_runtime.stop_container.side_effect = RuntimeError("daemon gone")

        await pool_manager.release_container("session-1")

        assert pool_manager.get_container_for_session("session-1") is None


class TestMaintenance:
    """Test idle recycling, dead container pruning and refill."""

    @pytest.mark.asyncio
    async def test_dead_warm_container_is_pruned(self, pool_manager, mock_runtime):
        """Test a warm container that vanished is removed and never assigned."""
        await pool_manager.initialize()

        async def status(container_id):
            if container_id == "container-0001":
                return None
            return ContainerInfo(container_id=container_id, status=ContainerStatus.RUNNING)

        mock_runtime.get_container_status.side_effect = status

        await pool_manager.run_maintenance()

        assert "container-0001" not in pool_manager._pool
        mock_runtime.remove_container.assert_any_await("container-0001")
        assert pool_manager.get_pool_stats().warm == 2

        assigned = await pool_manager.assign_container("agent-1", "session-1")
        assert assigned == "container-0002"

    @pytest.mark.asyncio
    async def test_errored_warm_container_is_pruned(self, pool_manager, mock_runtime):
        """Test a warm container in the error state is removed."""
        await pool_manager.initialize()

        async def status(container_id):
            state = (
                ContainerStatus.ERROR
                if container_id == "container-0002"
                else ContainerStatus.READY
            )
            return ContainerInfo(container_id=container_id, status=state)

        mock_runtime.get_container_status.side_effect = status

        await pool_manager.run_maintenance()

        assert "container-0002" not in pool_manager._pool
        assert "container-0001" in pool_manager._pool

    @pytest.mark.asyncio
    async def test_assigned_containers_are_not_inspected(
        self, pool_manager, mock_runtime
    ):
        """Test pruning only considers warm entries."""
        await pool_manager.initialize()
        await pool_manager.assign_container("agent-1", "session-1")
        await drain_refills(pool_manager)
        mock_runtime.get_container_status.side_effect = None
        mock_runtime.get_container_status.return_value = None

        await pool_manager.run_maintenance()

        inspected = [c.args[0] for c in mock_runtime.get_container_status.await_args_list]
        assert "container-0001" not in inspected
        assert pool_manager.get_container_for_session("session-1") is not None

    @pytest.mark.asyncio
    async def test_idle_assigned_container_is_recycled(
        self, pool_manager, mock_runtime
    ):
        """Test containers idle past the timeout are destroyed."""
        await pool_manager.initialize()
        container_id = await pool_manager.assign_container("agent-1", "session-1")
        entry = pool_manager.get_container_for_session("session-1")
        entry.assigned_at = datetime.now(timezone.utc) - timedelta(minutes=10)

        await pool_manager.run_maintenance()

        assert pool_manager.get_container_for_session("session-1") is None
        mock_runtime.stop_container.assert_awaited_with(container_id)
        mock_runtime.remove_container.assert_any_await(container_id)

    @pytest.mark.asyncio
    async def test_recent_assignment_is_kept(self, pool_manager):
        """Test containers within the idle timeout survive maintenance."""
        await pool_manager.initialize()
        await pool_manager.assign_container("agent-1", "session-1")

        await pool_manager.run_maintenance()

        assert pool_manager.get_container_for_session("session-1") is not None

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_refill(self, pool_manager, mock_runtime):
        """Test an error in one maintenance step leaves the others running."""
        await pool_manager.initialize()
        pool_manager._pool.pop("container-0001")

        with patch.object(
            pool_manager,
            "_recycle_idle_containers",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            await pool_manager.run_maintenance()

        assert pool_manager.get_pool_stats().warm == 2
        assert mock_runtime.create_container.await_count == 3

    @pytest.mark.asyncio
    async def test_maintenance_loop_runs_periodically(
        self, policy_store, mock_runtime, pool_config
    ):
        """Test the background task calls run_maintenance on its interval."""
        manager = SandboxPoolManager(
            policy_store,
            runtime=mock_runtime,
            pool_config=pool_config,
            maintenance_interval=0.01,
        )
        await manager.initialize()

        try:
            await asyncio.sleep(0.1)
            assert mock_runtime.get_container_status.await_count > 0
        finally:
            await manager.shutdown()
        assert manager._maintenance_task is None

    @pytest.mark.asyncio
    async def test_cleanup_stale_containers_counts_successes(
        self, pool_manager, mock_runtime
    ):
        """Test per-container failures are isolated during stale cleanup."""
        mock_runtime.list_sandbox_containers.return_value = ["a", "b", "c"]
        mock_runtime.stop_container.side_effect = [RuntimeError("boom"), None, None]

        cleaned = await pool_manager.cleanup_stale_containers()

        assert cleaned == 2


class TestShutdown:
    """Test pool shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_destroys_everything(self, pool_manager, mock_runtime):
        """Test shutdown removes every container and disables the pool."""
        await pool_manager.initialize()
        await pool_manager.assign_container("agent-1", "session-1")
        await drain_refills(pool_manager)

        await pool_manager.shutdown()

        stats = pool_manager.get_pool_stats()
        assert (stats.total, stats.warm, stats.assigned, stats.enabled) == (
            0,
            0,
            0,
            False,
        )
        removed = {c.args[0] for c in mock_runtime.remove_container.await_args_list}
        assert removed == {"container-0001", "container-0002", "container-0003"}

    @pytest.mark.asyncio
    async def test_shutdown_on_empty_pool(self, pool_manager):
        """Test shutdown is safe before initialize."""
        await pool_manager.shutdown()

        assert pool_manager.get_pool_stats().to_dict()["enabled"] is False
        assert pool_manager.get_pool_stats().total == 0

    @pytest.mark.asyncio
    async def test_assign_after_shutdown_raises(self, pool_manager):
        """Test the pool rejects assignments once shut down."""
        await pool_manager.initialize()
        await pool_manager.shutdown()

        with pytest.raises(ValidationError, match="not enabled"):
            await pool_manager.assign_container("agent-1", "session-1")

    @pytest.mark.asyncio
    async def test_container_created_during_shutdown_is_removed(
        self, policy_store, mock_runtime, no_warm_config
    ):
        """Test a creation that finishes after shutdown is not inserted."""
        release = asyncio.Event()
        entered = asyncio.Event()

        async def blocked_create(sandbox_config, limits=None):
            entered.set()
            await release.wait()
            return "late-container"

        mock_runtime.create_container.side_effect = blocked_create
        manager = SandboxPoolManager(
            policy_store, runtime=mock_runtime, pool_config=no_warm_config
        )
        await manager.initialize()

        task = asyncio.create_task(manager.assign_container("agent-1", "session-1"))
        await entered.wait()
        await manager.shutdown()
        release.set()

        with pytest.raises(ValidationError):
            await task

        mock_runtime.remove_container.assert_awaited_with("late-container")
        assert manager.get_pool_stats().total == 0

    @pytest.mark.asyncio
    async def test_shutdown_finishes_recycle_in_progress(
        self, policy_store, mock_runtime, pool_config
    ):
        """Test a container recycled when shutdown cancels maintenance is still removed."""
        release = asyncio.Event()
        entered = asyncio.Event()

        async def blocked_stop(container_id):
            if container_id == "container-0001":
                entered.set()
                await release.wait()

        manager = SandboxPoolManager(
            policy_store,
            runtime=mock_runtime,
            pool_config=pool_config,
            maintenance_interval=0.01,
        )
        await manager.initialize()
        await manager.assign_container("agent-1", "session-1")
        await drain_refills(manager)
        mock_runtime.stop_container.side_effect = blocked_stop

        entry = manager.get_container_for_session("session-1")
        entry.assigned_at = datetime.now(timezone.utc) - timedelta(minutes=10)
        await asyncio.wait_for(entered.wait(), timeout=5)

        shutdown = asyncio.create_task(manager.shutdown())
        await asyncio.sleep(0.05)
        release.set()
        await shutdown

        removed = {c.args[0] for c in mock_runtime.remove_container.await_args_list}
        assert removed == {"container-0001", "container-0002", "container-0003"}
        assert not manager._teardown_tasks
