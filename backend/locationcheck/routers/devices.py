"""Device API endpoints: registration, telemetry, settings and history."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import get_current_device
from ..dependencies import Services, get_services
from ..errors import Unauthorized
from ..schemas import (
    DeviceRegister,
    DeviceSettingsResponse,
    DeviceSettingsUpdate,
    DeviceTelemetry,
    LocationsResponse,
    NotificationRequest,
    TokenResponse,
)
from ..services.realtime_channel import SETTINGS_UPDATED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/device", tags=["device"])


def ensure_owner(device_id: Optional[str], current_device: str):
    """A device may only read or write its own records."""
    if device_id is not None and device_id != current_device:
        raise Unauthorized("deviceId does not match credential")


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register_device(data: DeviceRegister, services: Services = Depends(get_services)):
    """Register a device (or re-register it) and return a fresh token.

    Re-registering rotates the credential: the previous token stops working.
    """
    token = await services.registry.register(
        device_id=data.device_id,
        model=data.device_model,
        name=data.device_name,
        os_version=data.os_version,
        screen_resolution=data.screen_resolution,
        app_version=data.app_version,
    )
    return TokenResponse(token=token)


@router.get("/verify")
async def verify_token(device_id: str = Depends(get_current_device)):
    """Check that the presented token is valid."""
    return {"message": "Token is valid", "deviceId": device_id}


@router.get("/me")
async def get_device(
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    """The calling device's identity and decrypted metadata."""
    device = await services.registry.get_device(device_id)
    return {"success": True, "device": device}


@router.post("/info")
async def submit_telemetry(
    data: DeviceTelemetry,
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    """Store a location ping and the metadata that came with it."""
    ensure_owner(data.device_id, device_id)
    ack = await services.store.record_telemetry(
        device_id=data.device_id,
        location_id=data.id,
        coords=data.coordinates(),
        meta=data.metadata(),
    )
    return ack.to_dict()


@router.get("/settings", response_model=DeviceSettingsResponse)
async def get_settings(
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    settings = await services.store.get_settings(device_id)
    return {"success": True, "settings": settings}


@router.put("/settings", response_model=DeviceSettingsResponse)
async def update_settings(
    data: DeviceSettingsUpdate,
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    """Change settings and push them to the device's live connection, if any."""
    settings = await services.store.update_settings(device_id, data.model_dump())
    pushed = await services.channels.push(device_id, SETTINGS_UPDATED, {"success": True, "data": settings})
    if pushed:
        logger.info(f"Settings pushed to connected device {device_id}")
    return {"success": True, "settings": settings}


@router.get("/locations", response_model=LocationsResponse)
async def list_locations(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    limit: int = Query(50),
    offset: int = Query(0),
    current_device: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    """Location history, newest first."""
    ensure_owner(device_id, current_device)
    locations = await services.store.list_locations(current_device, limit=limit, offset=offset)
    return {"success": True, "locations": locations}


@router.post("/location-notification")
async def location_notification(
    data: NotificationRequest,
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    """Build (and log) the silent push payload carrying the device's last location."""
    ensure_owner(data.device_id, device_id)
    return await services.notifications.record_and_build_payload(data.device_id or device_id)


@router.get("/notifications")
async def list_notifications(
    limit: int = Query(50),
    device_id: str = Depends(get_current_device),
    services: Services = Depends(get_services),
):
    notifications = await services.notifications.list_notifications(device_id, limit=limit)
    return {"success": True, "notifications": notifications}
