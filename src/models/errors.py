"""Error models and exception classes for the Sandbox Pool service."""

import time
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    TIMEOUT = "timeout"
    INTERNAL_SERVER = "internal_server"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_SERVICE = "external_service"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    model_config = ConfigDict(use_enum_values=True)

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    request_id: Optional[str] = Field(
        None, description="Request identifier for tracking"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")


# Custom Exception Classes


class SandboxServiceException(Exception):
    """Base exception for the Sandbox Pool service."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
        )


class ValidationError(SandboxServiceException):
    """Invalid request or call made in the wrong state."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class AuthorizationError(SandboxServiceException):
    """Caller-supplied input attempted to reach outside its allowed scope."""

    def __init__(self, message: str = "Access denied", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.AUTHORIZATION,
            status_code=403,
            **kwargs,
        )


class ResourceNotFoundError(SandboxServiceException):
    """Requested record does not exist."""

    def __init__(self, resource: str, resource_id: str, **kwargs):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )


class CapacityError(SandboxServiceException):
    """Pool is at its hard container limit."""

    def __init__(self, message: str = "Maximum container limit reached", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.RESOURCE_EXHAUSTED,
            status_code=409,
            **kwargs,
        )


class ExternalServiceError(SandboxServiceException):
    """An external dependency (the container runtime) reported a failure."""

    def __init__(self, service: str, message: str = None, **kwargs):
        error_message = message or f"{service} request failed"
        self.service = service
        super().__init__(
            message=error_message,
            error_type=ErrorType.EXTERNAL_SERVICE,
            status_code=502,
            **kwargs,
        )


class ServiceUnavailableError(SandboxServiceException):
    """Service unavailable errors."""

    def __init__(self, service: str, message: str = None, **kwargs):
        error_message = message or f"{service} service is currently unavailable"
        super().__init__(
            message=error_message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=503,
            **kwargs,
        )
