"""Container runtime configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeConfig(BaseSettings):
    """Container runtime command settings."""

    model_config = SettingsConfigDict(env_prefix="sandbox_", extra="ignore")

    runtime_binary: str = Field(default="docker")
    name_prefix: str = Field(default="agent-sandbox-", min_length=1)
    command_timeout_seconds: int = Field(default=30, ge=1, le=600)
    probe_timeout_seconds: int = Field(default=5, ge=1, le=60)
    exec_timeout_seconds: int = Field(default=600, ge=1, le=86400)
    stop_grace_seconds: int = Field(default=10, ge=0, le=300)
    maintenance_interval_seconds: int = Field(default=30, ge=1, le=3600)
    pool_enabled: bool = Field(default=True)
