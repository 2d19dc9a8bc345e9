"""Device schemas for API.

Request bodies use the mobile client's camelCase names. Required fields are
declared optional here and enforced by the services, so a missing field is
reported as a 400 validation error listing what is required.
"""
from typing import Optional
from pydantic import BaseModel, Field


class DeviceRegister(BaseModel):
    """Schema for device registration request."""
    device_id: Optional[str] = Field(None, alias="deviceId")
    device_model: Optional[str] = Field(None, alias="deviceModel")
    device_name: Optional[str] = Field(None, alias="deviceName")
    os_version: Optional[str] = Field(None, alias="osVersion")
    screen_resolution: Optional[str] = Field(None, alias="screenResolution")
    app_version: Optional[str] = Field(None, alias="appVersion")

    class Config:
        populate_by_name = True


class TokenResponse(BaseModel):
    token: str


class DeviceTelemetry(BaseModel):
    """Schema for a telemetry ping posted over HTTP."""
    id: Optional[str] = None
    device_id: Optional[str] = Field(None, alias="deviceId")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    battery_level: Optional[float] = Field(None, alias="batteryLevel")
    device_model: Optional[str] = Field(None, alias="deviceModel")
    device_name: Optional[str] = Field(None, alias="deviceName")
    os_version: Optional[str] = Field(None, alias="osVersion")
    screen_resolution: Optional[str] = Field(None, alias="screenResolution")
    app_version: Optional[str] = Field(None, alias="appVersion")

    class Config:
        populate_by_name = True

    def coordinates(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "accuracy": self.accuracy,
        }

    def metadata(self) -> dict:
        """Values keyed by DeviceInfo column."""
        return {
            "battery_level": self.battery_level,
            "model": self.device_model,
            "name": self.device_name,
            "os_version": self.os_version,
            "screen_resolution": self.screen_resolution,
            "app_version": self.app_version,
        }


class NotificationRequest(BaseModel):
    device_id: Optional[str] = Field(None, alias="deviceId")

    class Config:
        populate_by_name = True
