"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rx_caller import __version__
from rx_caller.api import calls, health, schedules, webhooks
from rx_caller.config import get_settings, require_valid_settings
from rx_caller.core.exceptions import RxCallerError
from rx_caller.core.logging import get_logger, setup_logging
from rx_caller.db.session import close_db, init_db


def rx_caller_error_handler(request: Request, exc: RxCallerError) -> JSONResponse:
    """Render domain errors with their own status code and error code."""
    log = get_logger(__name__)
    log.info(
        "Request failed",
        error=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with structured response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": _status_code_to_error_type(exc.status_code),
            "message": str(exc.detail),
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with field information."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field or "request",
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": errors,
        },
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Internal details are only exposed in debug mode.
    """
    log = get_logger(__name__)
    log.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )

    settings = get_settings()
    detail = str(exc) if settings.debug else "An internal error occurred"

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "INTERNAL_ERROR",
            "message": detail,
        },
    )


def _status_code_to_error_type(status_code: int) -> str:
    error_types = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
        502: "BAD_GATEWAY",
        503: "SERVICE_UNAVAILABLE",
        504: "GATEWAY_TIMEOUT",
    }
    return error_types.get(status_code, "ERROR")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = require_valid_settings()
    log = get_logger(__name__)

    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        environment=settings.environment,
    )

    log.info(
        "Starting rx-caller",
        version=__version__,
        environment=settings.environment,
        voice_provider=settings.voice.provider,
    )

    log.info("Initializing database")
    await init_db()
    log.info("Database initialized successfully")

    scheduler = None
    if settings.scheduler.enabled:
        from rx_caller.dependencies import get_campaign_scheduler

        scheduler = get_campaign_scheduler()
        await scheduler.start()
    else:
        log.info("Campaign scheduler disabled")

    yield

    log.info("Shutting down rx-caller")
    if scheduler:
        await scheduler.stop()

    from rx_caller.integrations.voice.factory import get_dispatch_gateway, reset_dispatch_gateway

    await get_dispatch_gateway().close()
    reset_dispatch_gateway()

    await close_db()
    log.info("Database connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="rx-caller",
        description="Outbound pharmacy patient calls with scheduled retry campaigns",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Exception handlers (most specific first)
    app.add_exception_handler(RxCallerError, rx_caller_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(calls.router, prefix="/api/v1", tags=["Calls"])
    app.include_router(schedules.router, prefix="/api/v1", tags=["Schedules"])
    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])

    return app


app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "rx_caller.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
