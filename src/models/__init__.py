"""Data models for the Sandbox Pool service."""

from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    SandboxServiceException,
    ValidationError,
    AuthorizationError,
    ResourceNotFoundError,
    CapacityError,
    ExternalServiceError,
    ServiceUnavailableError,
)
from .pool import PoolEntry, PoolConfig, PoolStats, DEFAULT_POOL_CONFIG
from .sandbox import (
    ContainerInfo,
    ContainerStatus,
    ExecResult,
    NetworkPolicy,
    ResourceLimits,
    SandboxConfig,
    DEFAULT_RESOURCE_LIMITS,
)
from .policy import AgentPolicyRecord, AgentPolicyUpdate, ResourceLimitsResponse

__all__ = [
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "SandboxServiceException",
    "ValidationError",
    "AuthorizationError",
    "ResourceNotFoundError",
    "CapacityError",
    "ExternalServiceError",
    "ServiceUnavailableError",
    # Pool models
    "PoolEntry",
    "PoolConfig",
    "PoolStats",
    "DEFAULT_POOL_CONFIG",
    # Sandbox models
    "ContainerInfo",
    "ContainerStatus",
    "ExecResult",
    "NetworkPolicy",
    "ResourceLimits",
    "SandboxConfig",
    "DEFAULT_RESOURCE_LIMITS",
    # Policy models
    "AgentPolicyRecord",
    "AgentPolicyUpdate",
    "ResourceLimitsResponse",
]
