"""
Main FastAPI application for the Market Data Gateway.
Includes lifespan management for the gateway and its background tasks.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import time

from .api.endpoints import router as api_router
from .api.schemas import ErrorResponse
from .core.config import Settings, settings as default_settings
from .core.logging_config import create_logger, setup_logging
from .gateway import Gateway

logger = create_logger(__name__)

ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error_response(status_code: int, message: Optional[str], details: Optional[dict] = None) -> JSONResponse:
    body = ErrorResponse(
        error=message or "Request failed",
        error_code=ERROR_CODES.get(status_code, f"HTTP_{status_code}"),
        details=details
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def create_app(gateway: Optional[Gateway] = None, config: Optional[Settings] = None) -> FastAPI:
    """Build the application; a prebuilt gateway can be supplied, e.g. for tests."""
    config = config or (gateway.settings if gateway else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the gateway on startup and stop it on shutdown."""
        logger.info("Starting Market Data Gateway", extra={
            "version": config.app_version,
            "debug": config.debug
        })

        app.state.gateway = gateway or Gateway(settings=config)
        try:
            await app.state.gateway.start()
        except Exception as e:
            logger.error("Failed to start Market Data Gateway", extra={"error": str(e)})
            raise
        app.state.started_at = datetime.utcnow()

        yield  # Application is running

        logger.info("Shutting down Market Data Gateway")
        try:
            await app.state.gateway.stop()
            logger.info("Market Data Gateway shutdown completed")
        except Exception as e:
            logger.error("Error during gateway shutdown", extra={"error": str(e)})

    app = FastAPI(
        title=config.app_name,
        description="Market data aggregation gateway with adaptive rate limiting, provider fallback and tiered caching",
        version=config.app_version,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        openapi_url="/openapi.json" if config.debug else None,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.debug else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def timed_access_log(request: Request, call_next):
        """Time each call, stamp X-Process-Time and write one access record."""
        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}
        try:
            response = await call_next(request)
        except Exception as e:
            fields["elapsed_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("Unhandled error while serving request", extra={**fields, "error": str(e)})
            return _error_response(500, "Internal server error")

        elapsed = time.perf_counter() - started
        logger.info("Served request", extra={
            **fields,
            "status": response.status_code,
            "elapsed_ms": round(elapsed * 1000, 2),
            "client": request.client.host if request.client else None
        })
        response.headers["X-Process-Time"] = f"{elapsed:.6f}"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            logger.warning("Request ended with server error", extra={
                "path": request.url.path,
                "status": exc.status_code,
                "detail": exc.detail
            })
        return _error_response(
            exc.status_code,
            exc.detail,
            details={"path": request.url.path, "method": request.method}
        )

    app.include_router(api_router, tags=["Market Data API"])

    @app.get("/", include_in_schema=False)
    async def root():
        """Service banner."""
        return {
            "service": config.app_name,
            "version": config.app_version,
            "status": "running",
            "docs_url": "/docs" if config.debug else "disabled",
            "timestamp": datetime.utcnow()
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz(request: Request):
        """Liveness probe: 200 while the gateway loops are up, 503 otherwise."""
        gateway_ = getattr(request.app.state, "gateway", None)
        if gateway_ is not None and gateway_.are_background_tasks_running():
            return {"status": "healthy"}
        return JSONResponse(status_code=503, content={"status": "unhealthy"})

    return app


def run() -> None:
    """Console entry point."""
    import uvicorn

    setup_logging()
    uvicorn.run(
        "market_gateway.main:create_app",
        factory=True,
        host=default_settings.server_host,
        port=default_settings.server_port,
        reload=default_settings.debug,
        log_config=None,
        access_log=False
    )


if __name__ == "__main__":
    run()
