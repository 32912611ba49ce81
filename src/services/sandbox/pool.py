"""Sandbox pool manager for agent session containers.

This module provides a container pooling mechanism that:
1. Pre-creates warm containers so sessions do not wait on container startup
2. Assigns exactly one container to a session and destroys it on release
3. Recycles idle assigned containers and prunes dead warm ones periodically
4. Runs fully disabled (not crashed) when the container runtime is missing

Containers are never returned to the warm pool. Every pool decision and the
mutation it leads to happen under one asyncio.Lock; runtime calls happen
outside the lock and the result is committed after re-acquiring it.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import structlog

from ...config import settings
from ...models.errors import CapacityError, ValidationError
from ...models.pool import PoolConfig, PoolEntry, PoolStats
from ...models.sandbox import ContainerStatus, ResourceLimits, SandboxConfig
from .policy import PolicyStore
from .runtime import ContainerRuntime

logger = structlog.get_logger(__name__)


class SandboxPoolManager:
    """Warm container pool and session assignment.

    Key behaviors:
    - Keeps ``warm_pool_size`` unassigned containers ready
    - Never tracks more than ``max_containers`` containers, counting
      creations still in flight
    - One container per session; release destroys the container
    - Background maintenance every ``maintenance_interval`` seconds
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        runtime: Optional[ContainerRuntime] = None,
        pool_config: Optional[PoolConfig] = None,
        maintenance_interval: Optional[float] = None,
    ):
        """Initialize the pool manager.

        Args:
            policy_store: Source of per-agent resource limits
            runtime: Container runtime adapter
            pool_config: Pool sizing (defaults to settings)
            maintenance_interval: Seconds between maintenance cycles
        """
        self._policy_store = policy_store
        self._runtime = runtime or ContainerRuntime()
        self._config = pool_config or PoolConfig.from_settings()
        self._maintenance_interval = (
            maintenance_interval
            if maintenance_interval is not None
            else settings.runtime.maintenance_interval_seconds
        )
        self._lock = asyncio.Lock()

        # container_id -> entry, in creation order
        self._pool: Dict[str, PoolEntry] = {}

        # Creations reserved against max_containers but not yet committed
        self._pending = 0
        # Subset of _pending that will become warm entries
        self._pending_warm = 0

        self._enabled = False
        self._stopping = False

        # Background tasks
        self._maintenance_task: Optional[asyncio.Task] = None
        self._refill_tasks: Set[asyncio.Task] = set()
        # Teardowns of entries already popped from _pool; shutdown awaits these
        self._teardown_tasks: Set[asyncio.Task] = set()

    @property
    def config(self) -> PoolConfig:
        return self._config

    def is_enabled(self) -> bool:
        return self._enabled

    async def initialize(self) -> bool:
        """Bring the pool up.

        Probes the runtime, purges containers left over from a previous
        process, fills the warm pool and starts the maintenance task.

        Returns:
            True if sandboxing is enabled, False if the runtime is unavailable
        """
        if self._enabled:
            return True

        self._stopping = False
        if not await self._runtime.is_docker_available():
            self._enabled = False
            logger.warning("Container runtime not available, sandboxing disabled")
            return False

        self._enabled = True
        logger.info(
            "Container runtime available, sandboxing enabled",
            warm_pool_size=self._config.warm_pool_size,
            max_containers=self._config.max_containers,
            idle_timeout_ms=self._config.idle_timeout_ms,
        )

        try:
            await self.cleanup_stale_containers()
        except Exception as e:
            logger.warning("Stale container cleanup failed", error=str(e))

        await self.fill_pool()

        self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        return True

    async def assign_container(
        self,
        agent_id: str,
        session_id: str,
        work_dir: Optional[str] = None,
    ) -> str:
        """Assign a started container to a session.

        Takes the oldest warm container, or creates one with the agent's
        policy when none is warm.

        Args:
            agent_id: Agent whose policy applies to on-demand containers
            session_id: Session that will own the container
            work_dir: Host directory mounted read-write at /workspace

        Returns:
            Container ID

        Raises:
            ValidationError: If sandboxing is not enabled
            CapacityError: If the pool is at max_containers
            AuthorizationError: If work_dir escapes via path traversal
            ExternalServiceError: If the runtime fails to create or start it
        """
        if not self._enabled:
            raise ValidationError("Sandboxing is not enabled")

        async with self._lock:
            existing = self._find_by_session(session_id)
            if existing is not None:
                logger.debug(
                    "Session already has a container",
                    session_id=session_id,
                    container_id=existing.container_id[:12],
                )
                return existing.container_id

            entry = self._first_warm()
            if entry is not None:
                entry.assign(session_id)
            else:
                if self._reserved_count() >= self._config.max_containers:
                    logger.warning(
                        "Container limit reached",
                        session_id=session_id,
                        max_containers=self._config.max_containers,
                    )
                    raise CapacityError("Maximum container limit reached")
                self._pending += 1

        if entry is None:
            try:
                limits = await self._policy_store.get_agent_policy(agent_id)
            except Exception:
                self._pending -= 1
                raise
            entry = await self._create_entry(
                agent_id, limits, work_dir=work_dir, session_id=session_id
            )

        try:
            await self._runtime.start_container(entry.container_id)
        except Exception:
            async with self._lock:
                self._pool.pop(entry.container_id, None)
            await self._runtime.remove_container(entry.container_id)
            raise

        logger.info(
            "Assigned container to session",
            container_id=entry.container_id[:12],
            session_id=session_id,
            agent_id=agent_id,
        )

        self._schedule_refill()
        return entry.container_id

    async def release_container(self, session_id: str) -> None:
        """Stop and remove a session's container. Unknown sessions are a no-op."""
        async with self._lock:
            entry = self._find_by_session(session_id)
            if entry is not None:
                self._pool.pop(entry.container_id, None)

        if entry is None:
            logger.debug("No container found for session", session_id=session_id)
            return

        await self._destroy_container(entry.container_id)
        logger.info(
            "Released container",
            container_id=entry.container_id[:12],
            session_id=session_id,
        )

    def get_container_for_session(self, session_id: str) -> Optional[PoolEntry]:
        return self._find_by_session(session_id)

    def get_pool_stats(self) -> PoolStats:
        """Get pool statistics."""
        warm = sum(1 for entry in self._pool.values() if entry.is_warm)
        return PoolStats(
            total=len(self._pool),
            warm=warm,
            assigned=len(self._pool) - warm,
            max_containers=self._config.max_containers,
            enabled=self._enabled,
        )

    async def shutdown(self) -> None:
        """Stop maintenance and destroy every pooled container."""
        self._stopping = True

        tasks = [t for t in [self._maintenance_task, *self._refill_tasks] if t]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._maintenance_task = None
        self._refill_tasks.clear()

        # Containers a cancelled cycle already took out of the pool
        if self._teardown_tasks:
            await asyncio.gather(*self._teardown_tasks, return_exceptions=True)

        async with self._lock:
            container_ids = list(self._pool.keys())

        logger.info("Shutting down sandbox pool", containers=len(container_ids))

        await asyncio.gather(
            *(self._destroy_container(cid) for cid in container_ids),
            return_exceptions=True,
        )

        async with self._lock:
            self._pool.clear()
        self._enabled = False

        logger.info("Sandbox pool stopped")

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def fill_pool(self) -> int:
        """Create warm containers up to warm_pool_size, within capacity.

        Returns:
            Number of warm containers created
        """
        if not self._enabled or self._stopping:
            return 0

        async with self._lock:
            warm_count = sum(1 for entry in self._pool.values() if entry.is_warm)
            needed = self._config.warm_pool_size - warm_count - self._pending_warm
            available = self._config.max_containers - self._reserved_count()
            to_create = min(needed, available)
            if to_create <= 0:
                return 0
            self._pending += to_create
            self._pending_warm += to_create

        limits = self._policy_store.default_limits
        results = await asyncio.gather(
            *(self._create_entry("", limits) for _ in range(to_create)),
            return_exceptions=True,
        )

        created = 0
        for result in results:
            if isinstance(result, PoolEntry):
                created += 1
            elif isinstance(result, BaseException):
                logger.warning("Failed to create warm container", error=str(result))

        logger.debug(
            "Pool fill complete",
            created=created,
            pool_size=len(self._pool),
            warm_target=self._config.warm_pool_size,
        )
        return created

    async def run_maintenance(self) -> None:
        """Recycle idle containers, prune dead warm ones, then refill.

        Each step has its own error boundary so a failing step never stops
        the ones after it.
        """
        if not self._enabled or self._stopping:
            return

        steps = (
            ("recycle_idle", self._recycle_idle_containers),
            ("prune_dead", self._prune_dead_warm_containers),
            ("fill_pool", self.fill_pool),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.warning("Maintenance step failed", step=name, error=str(e))

    async def cleanup_stale_containers(self) -> int:
        """Remove containers left behind by a previous process.

        Returns:
            Number of containers cleaned up
        """
        container_ids = await self._runtime.list_sandbox_containers()
        cleaned = 0
        for container_id in container_ids:
            try:
                await self._runtime.stop_container(container_id)
                await self._runtime.remove_container(container_id)
                cleaned += 1
                logger.info("Cleaned up stale container", container_id=container_id[:12])
            except Exception as e:
                logger.warning(
                    "Failed to clean up stale container",
                    container_id=container_id[:12],
                    error=str(e),
                )
        return cleaned

    # =========================================================================
    # Private methods
    # =========================================================================

    def _find_by_session(self, session_id: str) -> Optional[PoolEntry]:
        for entry in self._pool.values():
            if entry.session_id == session_id:
                return entry
        return None

    def _first_warm(self) -> Optional[PoolEntry]:
        """Oldest warm entry (dict order is creation order)."""
        for entry in self._pool.values():
            if entry.is_warm:
                return entry
        return None

    def _reserved_count(self) -> int:
        return len(self._pool) + self._pending

    def _release_reservation(self, warm: bool) -> None:
        self._pending -= 1
        if warm:
            self._pending_warm -= 1

    async def _create_entry(
        self,
        agent_id: str,
        limits: ResourceLimits,
        work_dir: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> PoolEntry:
        """Create a container for a slot already reserved in ``_pending``.

        Without a ``session_id`` the slot is a warm one, also counted in
        ``_pending_warm``. The reservation is released and the entry inserted
        in the same locked step, so capacity is never double counted or
        under counted.
        """
        warm = session_id is None
        sandbox_id = uuid.uuid4().hex
        sandbox_config = SandboxConfig.from_limits(
            sandbox_id=sandbox_id,
            agent_id=agent_id,
            image=self._config.default_image,
            limits=limits,
            work_dir=work_dir,
        )

        try:
            container_id = await self._runtime.create_container(sandbox_config, limits)
        except (Exception, asyncio.CancelledError):
            async with self._lock:
                self._release_reservation(warm)
            raise

        async with self._lock:
            self._release_reservation(warm)
            if not self._stopping:
                entry = PoolEntry(container_id=container_id, sandbox_id=sandbox_id)
                if not warm:
                    entry.assign(session_id)
                self._pool[container_id] = entry
                return entry

        # Shutdown began while the container was being created
        await self._runtime.remove_container(container_id)
        raise ValidationError("Sandboxing is not enabled")

    async def _destroy_container(self, container_id: str) -> None:
        try:
            await self._runtime.stop_container(container_id)
            await self._runtime.remove_container(container_id)
        except Exception as e:
            logger.warning(
                "Error destroying container",
                container_id=container_id[:12],
                error=str(e),
            )

    async def _teardown(self, coro) -> None:
        """Run a teardown that cancelling the calling cycle cannot interrupt.

        Used once an entry has left ``_pool``: shutdown no longer sees it
        there, so the teardown task is tracked and awaited by shutdown.
        """
        task = asyncio.create_task(coro)
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_tasks.discard)
        await asyncio.shield(task)

    async def _recycle_idle_containers(self) -> int:
        now = datetime.now(timezone.utc)
        async with self._lock:
            idle: List[PoolEntry] = [
                entry
                for entry in self._pool.values()
                if not entry.is_warm
                and entry.idle_ms(now) > self._config.idle_timeout_ms
            ]
            for entry in idle:
                self._pool.pop(entry.container_id, None)

        for entry in idle:
            logger.info(
                "Recycling idle container",
                container_id=entry.container_id[:12],
                session_id=entry.session_id,
                idle_ms=int(entry.idle_ms(now)),
            )
            await self._teardown(self._destroy_container(entry.container_id))
        return len(idle)

    async def _prune_dead_warm_containers(self) -> int:
        async with self._lock:
            warm = [entry for entry in self._pool.values() if entry.is_warm]

        pruned = 0
        for entry in warm:
            try:
                info = await self._runtime.get_container_status(entry.container_id)
                if info is not None and info.status != ContainerStatus.ERROR:
                    continue

                async with self._lock:
                    # Skip entries assigned or removed while inspecting
                    current = self._pool.get(entry.container_id)
                    if current is None or not current.is_warm:
                        continue
                    self._pool.pop(entry.container_id, None)

                logger.warning(
                    "Removing dead warm container",
                    container_id=entry.container_id[:12],
                    status=info.status.value if info else "missing",
                )
                await self._teardown(self._runtime.remove_container(entry.container_id))
                pruned += 1
            except Exception as e:
                logger.warning(
                    "Failed to check warm container",
                    container_id=entry.container_id[:12],
                    error=str(e),
                )
        return pruned

    def _schedule_refill(self) -> None:
        """Refill the warm pool in the background without blocking the caller."""
        if self._stopping:
            return
        task = asyncio.create_task(self._background_refill())
        self._refill_tasks.add(task)
        task.add_done_callback(self._refill_tasks.discard)

    async def _background_refill(self) -> None:
        try:
            await self.fill_pool()
        except Exception as e:
            logger.warning("Background pool refill failed", error=str(e))

    async def _maintenance_loop(self) -> None:
        """Background task running maintenance on a fixed interval."""
        while self._enabled and not self._stopping:
            try:
                await asyncio.sleep(self._maintenance_interval)
                await self.run_maintenance()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Maintenance cycle failed", error=str(e))
