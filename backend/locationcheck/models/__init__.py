"""Database models."""
from .device import Device
from .device_info import DeviceInfo
from .device_location import DeviceLocation, ENCRYPTED_LOCATION_FIELDS
from .device_settings import DeviceSettings, DEFAULT_DATA_SEND_INTERVAL
from .auth_credential import AuthCredential
from .notification import NotificationRecord

__all__ = [
    "Device",
    "DeviceInfo",
    "DeviceLocation",
    "DeviceSettings",
    "AuthCredential",
    "NotificationRecord",
    "ENCRYPTED_LOCATION_FIELDS",
    "DEFAULT_DATA_SEND_INTERVAL",
]
