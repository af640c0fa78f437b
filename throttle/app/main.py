from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from throttle.app.api.admin import router as admin_router
from throttle.app.core.config import settings
from throttle.app.core.logging import get_logger, setup_logging
from throttle.app.core.redis_client import close_redis_client
from throttle.app.exceptions import RateLimitExceededError, StoreUnavailableError, ThrottleException
from throttle.app.middleware.rate_limit import throttled_response_from_error
from throttle.app.services.rate_limit import (
    RateLimiter,
    get_profile_registry,
    get_rate_limiter,
    set_rate_limiter,
)


def create_app(limiter: Optional[RateLimiter] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        limiter: Engine to install as the process-wide one (built from
            settings on first use when omitted)

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    # Fail fast on a broken policy table before serving any traffic
    registry = get_profile_registry()
    if limiter is not None:
        set_rate_limiter(limiter)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Logs the active policy on startup and closes the shared Redis
        connection pool on shutdown.
        """
        logger.info(
            "Application startup complete",
            extra={
                "profiles": sorted(registry),
                "backend": settings.rate_limit_backend,
                "debug_mode": settings.debug,
            },
        )
        yield
        await close_redis_client()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Throttle",
        description="Distributed sliding-window rate limiting with fail-open admission control",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check reporting whether the shared store is reachable.

        The service stays "ok" when the store is down because the limiter
        fails open; the store component reports "degraded".
        """
        store_status = "ok"
        try:
            await get_rate_limiter().store.ping()
        except StoreUnavailableError as e:
            logger.warning(f"Rate limit store health check failed: {e}")
            store_status = "degraded"

        return {
            "status": "ok",
            "components": {
                "rate_limit_store": {
                    "status": store_status,
                    "backend": settings.rate_limit_backend,
                },
                "profiles": len(registry),
            },
        }

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        return throttled_response_from_error(exc)

    @app.exception_handler(ThrottleException)
    async def throttle_exception_handler(request: Request, exc: ThrottleException) -> JSONResponse:
        logger.error(f"Unhandled limiter error: {exc.message}", extra={"path": request.url.path})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message if settings.debug else "Internal error", "code": exc.code},
        )

    return app


app = create_app()
