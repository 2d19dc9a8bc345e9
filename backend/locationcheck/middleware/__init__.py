"""HTTP middleware."""
from .rate_limit import build_limiter, rate_limit_exceeded_handler

__all__ = ["build_limiter", "rate_limit_exceeded_handler"]
