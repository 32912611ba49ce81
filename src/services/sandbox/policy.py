"""Per-agent sandbox policy store backed by SQLite.

Agents without a stored override get the system default ResourceLimits.
Overrides only track cpu, memory, network and timeout; pids and storage
ceilings always come from the defaults.
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosqlite
import structlog

from ...config import settings
from ...models.policy import AgentPolicyRecord, AgentPolicyUpdate
from ...models.sandbox import ResourceLimits

logger = structlog.get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sandbox_configs (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL UNIQUE,
    image TEXT NOT NULL,
    cpu_limit REAL NOT NULL,
    memory_limit_mb INTEGER NOT NULL,
    network_policy TEXT NOT NULL,
    timeout_seconds INTEGER NOT NULL,
    read_only_mounts TEXT NOT NULL DEFAULT '[]',
    work_dir TEXT DEFAULT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_POLICY_COLUMNS = ("cpu_limit", "memory_limit_mb", "network_policy", "timeout_seconds")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PolicyStore:
    """Stores per-agent resource-limit overrides.

    Usage:
        store = PolicyStore("data/sandbox.db")
        await store.open()
        limits = await store.get_agent_policy("agent-1")
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        default_limits: Optional[ResourceLimits] = None,
        default_image: Optional[str] = None,
    ):
        self._db_path = db_path or settings.policy_db_path
        self._defaults = default_limits or settings.resources.default_limits()
        self._default_image = default_image or settings.sandbox_default_image
        self._db: Optional[aiosqlite.Connection] = None
        # Serializes read-merge-write so concurrent updates see each other
        self._write_lock = asyncio.Lock()

    @property
    def default_limits(self) -> ResourceLimits:
        return self._defaults

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Connect to the database and ensure the schema exists."""
        if self._db is not None:
            return

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        if self._db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()
        logger.info("Policy store opened", db_path=self._db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Policy store closed")

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Policy store is not open")
        return self._db

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get_row(self, agent_id: str) -> Optional[aiosqlite.Row]:
        cursor = await self._conn().execute(
            "SELECT * FROM sandbox_configs WHERE agent_id = ?", (agent_id,)
        )
        return await cursor.fetchone()

    def _limits_from_row(self, row: Optional[aiosqlite.Row]) -> ResourceLimits:
        if row is None:
            return self._defaults
        return self._defaults.merge({col: row[col] for col in _POLICY_COLUMNS})

    async def get_agent_policy(self, agent_id: str) -> ResourceLimits:
        """Get the effective limits for an agent (defaults when no override)."""
        return self._limits_from_row(await self._get_row(agent_id))

    async def set_agent_policy(
        self,
        agent_id: str,
        limits: Union[AgentPolicyUpdate, Dict[str, Any]],
    ) -> ResourceLimits:
        """Merge a partial override onto the agent's policy and upsert it.

        Args:
            agent_id: Agent identifier
            limits: Partial override; unset fields keep their current value

        Returns:
            The resulting effective limits
        """
        if isinstance(limits, AgentPolicyUpdate):
            overrides = limits.model_dump(exclude_none=True)
        else:
            overrides = {k: v for k, v in limits.items() if v is not None}

        db = self._conn()
        async with self._write_lock:
            row = await self._get_row(agent_id)
            merged = self._limits_from_row(row).merge(overrides)
            now = _now()

            await db.execute(
                """
                INSERT INTO sandbox_configs (
                    id, agent_id, image, cpu_limit, memory_limit_mb, network_policy,
                    timeout_seconds, read_only_mounts, work_dir, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(agent_id) DO UPDATE SET
                    cpu_limit = excluded.cpu_limit,
                    memory_limit_mb = excluded.memory_limit_mb,
                    network_policy = excluded.network_policy,
                    timeout_seconds = excluded.timeout_seconds,
                    updated_at = excluded.updated_at
                """,
                (
                    uuid.uuid4().hex,
                    agent_id,
                    self._default_image,
                    merged.cpu_limit,
                    merged.memory_limit_mb,
                    merged.network_policy.value,
                    merged.timeout_seconds,
                    json.dumps([]),
                    None,
                    now,
                    now,
                ),
            )
            await db.commit()

        logger.info(
            "Agent policy saved",
            agent_id=agent_id,
            created=row is None,
            **merged.to_dict(),
        )
        return merged

    async def remove_agent_policy(self, agent_id: str) -> bool:
        """Delete an agent's override.

        Returns:
            True if a row was deleted, False if the agent had no override
        """
        db = self._conn()
        cursor = await db.execute(
            "DELETE FROM sandbox_configs WHERE agent_id = ?", (agent_id,)
        )
        await db.commit()
        removed = cursor.rowcount > 0
        if removed:
            logger.info("Agent policy removed", agent_id=agent_id)
        return removed

    async def list_agent_policies(self) -> List[AgentPolicyRecord]:
        """List all stored overrides, most recently created first."""
        cursor = await self._conn().execute(
            "SELECT * FROM sandbox_configs ORDER BY created_at DESC, rowid DESC"
        )
        rows = await cursor.fetchall()
        return [
            AgentPolicyRecord(
                id=row["id"],
                agent_id=row["agent_id"],
                image=row["image"],
                cpu_limit=row["cpu_limit"],
                memory_limit_mb=row["memory_limit_mb"],
                network_policy=row["network_policy"],
                timeout_seconds=row["timeout_seconds"],
                read_only_mounts=json.loads(row["read_only_mounts"] or "[]"),
                work_dir=row["work_dir"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]
