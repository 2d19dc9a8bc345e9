"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import Settings, settings as default_settings
from .database import init_db, close_db
from .dependencies import build_services
from .errors import ServiceError, ValidationError
from .middleware import build_limiter, rate_limit_exceeded_handler
from .routers import devices_router, realtime_router

logger = logging.getLogger(__name__)


def configure_logging(config: Settings):
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    services = app.state.services
    logger.info("Starting locationcheck backend")

    await init_db(services.engine)
    logger.info("Database initialized")

    services.pool.start()

    yield

    services.pool.shutdown()
    await close_db(services.engine)
    logger.info("Shutdown complete")


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        if location:
            fields.append(".".join(location))
    error = ValidationError("Invalid request", missing=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal", "message": "Internal server error"},
    )


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or default_settings
    configure_logging(config)

    app = FastAPI(
        title="locationcheck",
        description="Device registration, encrypted telemetry storage and realtime channel",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.services = build_services(config)

    # Set up rate limiting
    limiter = build_limiter(config)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(devices_router)
    app.include_router(realtime_router)

    @app.get("/health")
    @limiter.exempt
    def health_check():
        return {
            "status": "healthy",
            "connections": app.state.services.channels.connection_count,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.web_port)
