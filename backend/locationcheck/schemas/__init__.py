"""Pydantic schemas for API request/response models."""
from .device import (
    DeviceRegister,
    TokenResponse,
    DeviceTelemetry,
    NotificationRequest,
)
from .settings import (
    DeviceSettingsView,
    DeviceSettingsResponse,
    DeviceSettingsUpdate,
)
from .location import (
    LocationView,
    LocationsResponse,
)

__all__ = [
    "DeviceRegister",
    "TokenResponse",
    "DeviceTelemetry",
    "NotificationRequest",
    "DeviceSettingsView",
    "DeviceSettingsResponse",
    "DeviceSettingsUpdate",
    "LocationView",
    "LocationsResponse",
]
