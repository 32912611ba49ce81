"""Main FastAPI application for the Sandbox Pool service."""

# Standard library imports
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

# Local application imports
from .api import sandbox
from .config import settings
from .dependencies.services import set_policy_store, set_pool_manager
from .models.errors import SandboxServiceException
from .services.sandbox.policy import PolicyStore
from .services.sandbox.pool import SandboxPoolManager
from .utils.error_handlers import (
    sandbox_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .utils.logging import setup_logging

# Setup logging
setup_logging()
logger = structlog.get_logger()


async def _startup_pool_manager(app: FastAPI, policy_store: PolicyStore) -> None:
    """Start the sandbox pool manager if enabled."""
    if not settings.runtime.pool_enabled:
        logger.info("Sandbox pool disabled")
        return

    try:
        manager = SandboxPoolManager(policy_store)
        if await manager.initialize():
            set_pool_manager(manager)
            app.state.pool_manager = manager
            logger.info("Sandbox pool started", **manager.get_pool_stats().to_dict())
        else:
            logger.warning("Sandbox pool not started, runtime unavailable")
    except Exception as e:
        logger.error("Failed to start sandbox pool", error=str(e))


async def _shutdown_services(app: FastAPI) -> None:
    """Stop the pool manager and close the policy store."""
    manager = getattr(app.state, "pool_manager", None)
    if manager:
        try:
            await manager.shutdown()
        except Exception as e:
            logger.error("Error stopping sandbox pool", error=str(e))
        set_pool_manager(None)

    policy_store = getattr(app.state, "policy_store", None)
    if policy_store:
        try:
            await policy_store.close()
        except Exception as e:
            logger.error("Error closing policy store", error=str(e))
        set_policy_store(None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Sandbox Pool service", version="1.0.0")

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")

    policy_store = PolicyStore()
    await policy_store.open()
    set_policy_store(policy_store)
    app.state.policy_store = policy_store

    await _startup_pool_manager(app, policy_store)

    logger.info("Sandbox Pool service startup completed")

    yield

    logger.info("Shutting down Sandbox Pool service")
    await _shutdown_services(app)
    logger.info("Sandbox Pool service shutdown completed")


app = FastAPI(
    title="Sandbox Pool API",
    description="Warm pool of isolated execution containers for agent sessions",
    version="1.0.0",
    debug=settings.api_debug,
    lifespan=lifespan,
)

# Register global error handlers
app.add_exception_handler(SandboxServiceException, sandbox_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(sandbox.router, prefix="/api", tags=["sandbox"])


@app.get("/health", summary="Basic health check")
async def basic_health_check():
    """Health check that reports whether sandboxing is active."""
    manager = getattr(app.state, "pool_manager", None)
    return {
        "status": "healthy",
        "service": "sandbox-pool",
        "sandbox_enabled": bool(manager and manager.is_enabled()),
    }


def run_server():
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        timeout_keep_alive=120,
    )


if __name__ == "__main__":
    run_server()
