"""Device settings schemas for API."""
from typing import Optional
from pydantic import BaseModel, Field


class DeviceSettingsView(BaseModel):
    """Settings as seen by the client."""
    dataSendInterval: int
    notificationEnabled: bool
    powerSaveMode: bool
    lastUpdated: Optional[str] = None


class DeviceSettingsResponse(BaseModel):
    success: bool = True
    settings: DeviceSettingsView


class DeviceSettingsUpdate(BaseModel):
    """Partial settings update. Omitted fields are left unchanged."""
    data_send_interval: Optional[int] = Field(None, alias="dataSendInterval")
    notification_enabled: Optional[bool] = Field(None, alias="notificationEnabled")
    power_save_mode: Optional[bool] = Field(None, alias="powerSaveMode")

    class Config:
        populate_by_name = True
