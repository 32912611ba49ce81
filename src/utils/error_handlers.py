"""Error handlers mapping pool and policy failures to JSON error bodies.

Every response carries a short ``request_id`` that also appears in the log
line, so an operator can match a client report to the pool event behind it.
"""

# Standard library imports
import uuid
from typing import List, Optional, Union

# Third-party imports
import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

# Local application imports
from ..models.errors import (
    SandboxServiceException,
    ErrorResponse,
    ErrorType,
    ErrorDetail,
)

logger = structlog.get_logger(__name__)

# Only routing can raise these here; everything else is a SandboxServiceException
ROUTING_ERROR_TYPES = {
    404: ErrorType.RESOURCE_NOT_FOUND,
    405: ErrorType.VALIDATION,
}


def _error_json(
    request: Request,
    status_code: int,
    error_type: ErrorType,
    message: str,
    details: Optional[List[ErrorDetail]] = None,
    **log_fields,
) -> JSONResponse:
    """Log the failure with its pool context and build the response."""
    request_id = uuid.uuid4().hex[:12]

    # agent_id and other route parameters identify what was being touched
    context = dict(request.path_params)
    context.update(log_fields)
    if details:
        context["details"] = [d.model_dump(exclude_none=True) for d in details]

    log = logger.error if status_code >= 500 else logger.warning
    log(
        message,
        request_id=request_id,
        error_type=error_type.value,
        status_code=status_code,
        method=request.method,
        path=request.url.path,
        **context,
    )

    body = ErrorResponse(
        error=message,
        error_type=error_type,
        details=details or None,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def sandbox_exception_handler(
    request: Request, exc: SandboxServiceException
) -> JSONResponse:
    """Capacity, policy, runtime and availability failures."""
    fields = {"exception": type(exc).__name__}
    service = getattr(exc, "service", None)
    if service:
        fields["service"] = service

    return _error_json(
        request,
        exc.status_code,
        exc.error_type,
        exc.message,
        details=exc.details,
        **fields,
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Unknown routes and unsupported methods."""
    default = ErrorType.VALIDATION if exc.status_code < 500 else ErrorType.INTERNAL_SERVER
    return _error_json(
        request,
        exc.status_code,
        ROUTING_ERROR_TYPES.get(exc.status_code, default),
        str(exc.detail),
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Malformed policy bodies and path values."""
    details = [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"] if loc != "body"),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]
    return _error_json(
        request, 422, ErrorType.VALIDATION, "Request validation failed", details=details
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected; internals stay in the log, not the response."""
    return _error_json(
        request,
        500,
        ErrorType.INTERNAL_SERVER,
        "An unexpected error occurred",
        exception=type(exc).__name__,
        exc_info=exc,
    )
