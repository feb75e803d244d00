"""
Application factory for FastAPI.

This module provides the create_app() function that creates and configures
the FastAPI application instance.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from api.v1 import api_router
from app.routes import health_router, root_router
from core.config import settings
from core.exceptions import RateLimitedError, RequestDeskError, ValidationFailedError
from core.instrumentator import instrumentator
from core.lifespan import lifespan
from core.middleware import CorrelationIdMiddleware

logger = logging.getLogger(__name__)


async def request_desk_error_handler(request: Request, exc: RequestDeskError) -> JSONResponse:
    """Render lifecycle errors as {"error": CODE, "detail": message}."""
    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi's per-IP limit with the RATE_LIMITED body and its rate-limit headers."""
    error = RateLimitedError(f"Rate limit exceeded: {exc.detail}")
    response = JSONResponse(status_code=error.status_code, content=error.to_dict())
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report framework validation failures with the VALIDATION_ERROR body."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))

    return JSONResponse(
        status_code=ValidationFailedError.status_code,
        content={"error": ValidationFailedError.code, "detail": "; ".join(messages)},
    )


def create_app() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with middleware, error
    handlers, routes and instrumentation.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Per-IP limit on every route; per-actor write quotas live in core.rate_limit
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit.per_minute}/minute"],
    )

    app = FastAPI(
        title=settings.api.app_name,
        version=settings.api.app_version,
        description="Service request lifecycle and collaboration sync API",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestDeskError, request_desk_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "X-Correlation-ID"],
        expose_headers=["X-Total-Count", "X-Page", "X-Per-Page", "X-Correlation-ID", "Retry-After"],
    )

    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(root_router)
    app.include_router(health_router)
    app.include_router(api_router, prefix=settings.api.api_v1_prefix)

    if settings.monitoring.enable_metrics:
        instrumentator.instrument(app)
        instrumentator.expose(app, endpoint="/metrics")

    return app
