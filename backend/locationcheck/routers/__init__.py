"""API routers."""
from .devices import router as devices_router
from .realtime import router as realtime_router

__all__ = ["devices_router", "realtime_router"]
