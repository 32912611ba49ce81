"""Container lifecycle operations via the container runtime CLI.

Every operation spawns the runtime binary as an asyncio subprocess with a
bounded timeout. Nothing here keeps state between calls; the adapter only
translates SandboxConfig/ResourceLimits into runtime flags and runtime output
back into models.
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from ...config import RuntimeConfig, settings
from ...models.errors import AuthorizationError, ExternalServiceError
from ...models.sandbox import (
    ContainerInfo,
    ContainerStatus,
    ExecResult,
    NetworkPolicy,
    ResourceLimits,
    SandboxConfig,
    DEFAULT_RESOURCE_LIMITS,
)

logger = structlog.get_logger(__name__)

# Exit code reported for commands that ran past their timeout
TIMEOUT_EXIT_CODE = 124
# Exit code reported when the runtime binary could not be spawned
SPAWN_FAILED_EXIT_CODE = 127

LABEL_PREFIX = "com.agent-sandbox"
WORKSPACE_MOUNT = "/workspace"

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a runtime RFC 3339 timestamp (nanosecond precision allowed)."""
    if not value or value.startswith("0001-01-01"):
        return None
    try:
        normalized = _FRACTION_RE.sub(r".\1", value.replace("Z", "+00:00"))
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ContainerRuntime:
    """Thin adapter over the container runtime command line.

    The command surface (create, start, stop -t, kill, rm -f, exec,
    inspect, ps, version) is the compatibility boundary with the runtime.
    """

    def __init__(self, runtime_config: Optional[RuntimeConfig] = None):
        """Initialize the runtime adapter.

        Args:
            runtime_config: Runtime command settings (defaults to global settings)
        """
        self._config = runtime_config or settings.runtime

    @property
    def name_prefix(self) -> str:
        """Name prefix shared by every container this service owns."""
        return self._config.name_prefix

    def container_name(self, sandbox_id: str) -> str:
        return f"{self._config.name_prefix}{sandbox_id}"

    async def run(self, args: List[str], timeout: Optional[float] = None) -> ExecResult:
        """Run the runtime binary with the given arguments.

        A subprocess that outlives its timeout is killed and reported with
        exit code 124. Output is decoded and trimmed.

        Args:
            args: Arguments passed to the runtime binary
            timeout: Timeout in seconds (defaults to the command timeout);
                0 or less waits without a limit

        Returns:
            ExecResult with exit code, stdout and stderr
        """
        if timeout is None:
            timeout = self._config.command_timeout_seconds

        try:
            proc = await asyncio.create_subprocess_exec(
                self._config.runtime_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ExecResult(
                exit_code=SPAWN_FAILED_EXIT_CODE,
                stderr=f"Failed to run {self._config.runtime_binary}: {e}",
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout if timeout > 0 else None
            )
        except asyncio.CancelledError:
            self._kill(proc)
            raise
        except asyncio.TimeoutError:
            self._kill(proc)
            await proc.wait()
            logger.warning(
                "Runtime command timed out",
                command=args[0] if args else "",
                timeout=timeout,
            )
            return ExecResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f"Command timed out after {timeout} seconds",
            )

        return ExecResult(
            exit_code=proc.returncode if proc.returncode is not None else 1,
            stdout=stdout_bytes.decode("utf-8", errors="replace").strip()
            if stdout_bytes
            else "",
            stderr=stderr_bytes.decode("utf-8", errors="replace").strip()
            if stderr_bytes
            else "",
        )

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def build_create_args(
        self,
        config: SandboxConfig,
        limits: ResourceLimits = DEFAULT_RESOURCE_LIMITS,
    ) -> List[str]:
        """Translate a sandbox config and its limits into create arguments.

        Raises:
            AuthorizationError: If the work directory contains a '..' segment
        """
        args = [
            "create",
            "--name", self.container_name(config.id),
            "--cpus", str(limits.cpu_limit),
            "--memory", f"{limits.memory_limit_mb}m",
            "--pids-limit", str(limits.pids_limit),
            "--storage-opt", f"size={limits.storage_limit_mb}M",
            "--label", f"{LABEL_PREFIX}.managed=true",
            "--label", f"{LABEL_PREFIX}.sandbox-id={config.id}",
            "--label", f"{LABEL_PREFIX}.agent-id={config.agent_id}",
        ]

        # 'host' keeps the runtime's default networking
        if limits.network_policy == NetworkPolicy.NONE:
            args.extend(["--network", "none"])
        elif limits.network_policy == NetworkPolicy.RESTRICTED:
            args.extend(["--dns", "0.0.0.0"])

        for mount in config.read_only_mounts:
            args.extend(["-v", f"{mount}:{mount}:ro"])

        if config.work_dir:
            if ".." in Path(config.work_dir).parts:
                raise AuthorizationError(
                    f"Path traversal denied: '{config.work_dir}' resolves outside "
                    "allowed directory"
                )
            resolved = Path(config.work_dir).expanduser().resolve()
            args.extend(["-v", f"{resolved}:{WORKSPACE_MOUNT}", "-w", WORKSPACE_MOUNT])

        # Enforced by the image entrypoint
        if config.timeout_seconds > 0:
            args.extend(["-e", f"SANDBOX_TIMEOUT={config.timeout_seconds}"])

        args.append(config.image)
        return args

    async def create_container(
        self,
        config: SandboxConfig,
        limits: ResourceLimits = DEFAULT_RESOURCE_LIMITS,
    ) -> str:
        """Create a container and return its runtime ID.

        Raises:
            AuthorizationError: If the work directory escapes via traversal
            ExternalServiceError: If the runtime fails to create the container
        """
        args = self.build_create_args(config, limits)

        logger.info(
            "Creating container",
            sandbox_id=config.id,
            agent_id=config.agent_id or "none",
            image=config.image,
        )
        result = await self.run(args)
        if not result.ok:
            raise ExternalServiceError(
                "Docker", f"Failed to create container: {result.stderr}"
            )
        return result.stdout

    async def start_container(self, container_id: str) -> None:
        """Start a created container.

        Raises:
            ExternalServiceError: If the runtime fails to start the container
        """
        result = await self.run(["start", container_id])
        if not result.ok:
            raise ExternalServiceError(
                "Docker",
                f"Failed to start container {container_id}: {result.stderr}",
            )
        logger.info("Started container", container_id=container_id[:12])

    async def stop_container(
        self, container_id: str, grace_seconds: Optional[int] = None
    ) -> None:
        """Stop a container, killing it if the graceful stop fails.

        Never raises.
        """
        if grace_seconds is None:
            grace_seconds = self._config.stop_grace_seconds

        try:
            result = await self.run(
                ["stop", "-t", str(grace_seconds), container_id],
                timeout=grace_seconds + 5,
            )
            if not result.ok:
                logger.warning(
                    "Stop failed, killing container",
                    container_id=container_id[:12],
                    error=result.stderr,
                )
                await self.run(["kill", container_id])
            logger.info("Stopped container", container_id=container_id[:12])
        except Exception as e:
            logger.warning(
                "Failed to stop container",
                container_id=container_id[:12],
                error=str(e),
            )

    async def remove_container(self, container_id: str) -> None:
        """Force-remove a container. Logs but never raises."""
        try:
            result = await self.run(["rm", "-f", container_id])
        except Exception as e:
            logger.warning(
                "Failed to remove container",
                container_id=container_id[:12],
                error=str(e),
            )
            return
        if not result.ok:
            logger.warning(
                "Failed to remove container",
                container_id=container_id[:12],
                error=result.stderr,
            )

    async def exec_in_container(
        self,
        container_id: str,
        command: List[str],
        timeout_ms: Optional[int] = None,
    ) -> ExecResult:
        """Execute a command inside a running container.

        ``timeout_ms`` of 0 runs the command without a timer.
        """
        if timeout_ms is None:
            timeout_ms = self._config.exec_timeout_seconds * 1000
        return await self.run(["exec", container_id, *command], timeout=timeout_ms / 1000)

    # =========================================================================
    # Inspection
    # =========================================================================

    async def get_container_status(self, container_id: str) -> Optional[ContainerInfo]:
        """Inspect a container.

        Returns:
            ContainerInfo, or None if the container cannot be inspected
        """
        result = await self.run(["inspect", "--format", "{{json .}}", container_id])
        if not result.ok:
            return None

        try:
            info = json.loads(result.stdout)
            if isinstance(info, list):
                info = info[0]
            state = info.get("State") or {}

            if state.get("Running"):
                status = ContainerStatus.RUNNING
            elif state.get("Status") == "created":
                status = ContainerStatus.READY
            elif state.get("Error") or state.get("Status") == "dead":
                status = ContainerStatus.ERROR
            else:
                status = ContainerStatus.STOPPED

            return ContainerInfo(
                container_id=info["Id"],
                status=status,
                image=(info.get("Config") or {}).get("Image", ""),
                created_at=_parse_timestamp(info.get("Created")),
                started_at=_parse_timestamp(state.get("StartedAt")),
                pid=state.get("Pid") or None,
            )
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            logger.warning(
                "Failed to parse container inspect output",
                container_id=container_id[:12],
            )
            return None

    async def is_docker_available(self) -> bool:
        """Check whether the runtime binary and its daemon respond. Never raises."""
        try:
            result = await self.run(
                ["version", "--format", "{{.Server.Version}}"],
                timeout=self._config.probe_timeout_seconds,
            )
            return result.ok
        except Exception:
            return False

    async def list_sandbox_containers(self) -> List[str]:
        """List IDs of all containers (stopped included) carrying the name prefix."""
        result = await self.run(
            [
                "ps", "-a",
                "--filter", f"name={self._config.name_prefix}",
                "--format", "{{.ID}}",
            ]
        )
        if not result.ok or not result.stdout:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
