"""Per-address request rate limiting.

Every HTTP route shares one budget of ``rate_limit_max_requests`` per
``rate_limit_window_minutes`` for each client address. The websocket
endpoint and the health check are not counted.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..config import Settings
from ..errors import RateLimited

logger = logging.getLogger(__name__)


def build_limiter(config: Settings) -> Limiter:
    """In-memory limiter applying the configured budget to every route."""
    limit = f"{config.rate_limit_max_requests} per {config.rate_limit_window_minutes} minutes"
    logger.info(f"Rate limit: {limit} per client address")
    return Limiter(
        key_func=get_remote_address,
        default_limits=[limit],
        storage_uri="memory://",
        enabled=config.rate_limit_enabled,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # Called synchronously by SlowAPIMiddleware
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}")
    error = RateLimited(f"Rate limit exceeded: {exc.detail}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
