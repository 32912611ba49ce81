"""Configuration management for the Sandbox Pool service.

This module provides a unified Settings class that keeps flat, environment
driven fields while exposing them as logical groups.

Usage:
    from src.config import settings

    # Access grouped settings
    settings.runtime.runtime_binary
    settings.resources.default_limits()

    # Or use the flat fields directly
    settings.sandbox_runtime_binary
    settings.sandbox_warm_pool_size
"""

from typing import Literal

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .logging import LoggingConfig
from .resources import ResourcesConfig
from .runtime import RuntimeConfig


class Settings(BaseSettings):
    """Application settings with environment variable support.

    This class provides both:
    1. Grouped access via nested configs (settings.runtime.runtime_binary)
    2. Flat access (settings.sandbox_runtime_binary)
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_debug: bool = Field(default=False)

    # Container runtime Configuration
    sandbox_runtime_binary: str = Field(
        default="docker",
        description="Container runtime CLI invoked for every container operation",
    )
    sandbox_name_prefix: str = Field(
        default="agent-sandbox-",
        min_length=1,
        description="Name prefix shared by every container this service creates",
    )
    sandbox_command_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Timeout for create/start/remove/inspect/list commands",
    )
    sandbox_probe_timeout_seconds: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Timeout for the runtime availability probe",
    )
    sandbox_exec_timeout_seconds: int = Field(
        default=600,
        ge=1,
        le=86400,
        description="Default timeout for commands executed inside a container",
    )
    sandbox_stop_grace_seconds: int = Field(
        default=10,
        ge=0,
        le=300,
        description="Grace period given to a container before it is killed",
    )

    # Sandbox Pool Configuration
    sandbox_pool_enabled: bool = Field(default=True)
    sandbox_warm_pool_size: int = Field(
        default=2, ge=0, le=100, description="Unassigned containers kept ready"
    )
    sandbox_max_containers: int = Field(
        default=10, ge=1, le=1000, description="Hard cap on live containers"
    )
    sandbox_idle_timeout_ms: int = Field(
        default=300_000,
        ge=1000,
        description="Idle time after which an assigned container is recycled",
    )
    sandbox_default_image: str = Field(default="agent-sandbox:latest")
    sandbox_maintenance_interval_seconds: int = Field(
        default=30, ge=1, le=3600, description="Seconds between maintenance cycles"
    )

    # Default Resource Limits (applied when an agent has no policy override)
    sandbox_cpu_limit: float = Field(default=1.0, gt=0, le=64)
    sandbox_memory_limit_mb: int = Field(default=512, ge=16, le=65536)
    sandbox_network_policy: Literal["none", "host", "restricted"] = Field(
        default="restricted"
    )
    sandbox_timeout_seconds: int = Field(default=600, ge=0, le=86400)
    sandbox_pids_limit: int = Field(default=100, ge=1, le=65536)
    sandbox_storage_limit_mb: int = Field(default=1024, ge=1)

    # Policy store Configuration
    policy_db_path: str = Field(
        default="data/sandbox.db",
        description="Path to the SQLite database holding per-agent policy overrides",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @validator("log_level")
    def normalize_log_level(cls, v):
        """Accept log levels in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @validator("sandbox_max_containers")
    def validate_max_containers(cls, v, values):
        """The warm pool target can never exceed the hard cap."""
        warm = values.get("sandbox_warm_pool_size")
        if warm is not None and warm > v:
            raise ValueError(
                "sandbox_warm_pool_size cannot be larger than sandbox_max_containers"
            )
        return v

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def runtime(self) -> RuntimeConfig:
        """Access container runtime configuration group."""
        return RuntimeConfig(
            runtime_binary=self.sandbox_runtime_binary,
            name_prefix=self.sandbox_name_prefix,
            command_timeout_seconds=self.sandbox_command_timeout_seconds,
            probe_timeout_seconds=self.sandbox_probe_timeout_seconds,
            exec_timeout_seconds=self.sandbox_exec_timeout_seconds,
            stop_grace_seconds=self.sandbox_stop_grace_seconds,
            maintenance_interval_seconds=self.sandbox_maintenance_interval_seconds,
            pool_enabled=self.sandbox_pool_enabled,
        )

    @property
    def resources(self) -> ResourcesConfig:
        """Access resource limits and pool sizing configuration group."""
        return ResourcesConfig(
            cpu_limit=self.sandbox_cpu_limit,
            memory_limit_mb=self.sandbox_memory_limit_mb,
            network_policy=self.sandbox_network_policy,
            timeout_seconds=self.sandbox_timeout_seconds,
            pids_limit=self.sandbox_pids_limit,
            storage_limit_mb=self.sandbox_storage_limit_mb,
            warm_pool_size=self.sandbox_warm_pool_size,
            max_containers=self.sandbox_max_containers,
            idle_timeout_ms=self.sandbox_idle_timeout_ms,
            default_image=self.sandbox_default_image,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(log_level=self.log_level, log_format=self.log_format)


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    # Grouped configs
    "LoggingConfig",
    "ResourcesConfig",
    "RuntimeConfig",
]
