"""Transactional storage for telemetry pings and device settings."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import DeviceNotFound, SettingsNotFound, StorageFailure, ValidationError
from ..models import Device, DeviceInfo, DeviceLocation, DeviceSettings, ENCRYPTED_LOCATION_FIELDS
from ..utils.db_utils import KeyedLocks, retry_on_lock
from .device_registry import INFO_FIELD_NAMES, require
from .field_cipher import AsyncFieldCipher

logger = logging.getLogger(__name__)

MAX_LOCATIONS_PAGE = 500
DEFAULT_LOCATIONS_PAGE = 50
MIN_SEND_INTERVAL = 5
MAX_SEND_INTERVAL = 86400

COORDINATE_RANGES = {
    "latitude": (-90.0, 90.0),
    "longitude": (-180.0, 180.0),
}


def to_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


@dataclass
class TelemetryAck:
    """Result of a committed telemetry write."""
    device_id: str
    location_id: str
    timestamp: datetime
    location: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        stamp = self.timestamp.isoformat()
        return {
            "success": True,
            "message": "Device info saved successfully",
            "timestamp": stamp,
            "data": {
                "deviceId": self.device_id,
                "lastSeenAt": stamp,
                "location": {"id": self.location_id, "timestamp": stamp, **self.location},
            },
        }


def settings_view(row: DeviceSettings) -> Dict[str, Any]:
    """Map a settings row onto client-facing names."""
    return {
        "dataSendInterval": row.data_send_interval,
        "notificationEnabled": bool(row.notification_enabled),
        "powerSaveMode": bool(row.power_save_mode),
        "lastUpdated": row.last_updated.isoformat() if row.last_updated else None,
    }


def _coordinates(coords: Dict[str, Any]) -> Dict[str, Optional[float]]:
    """Coerce coordinate values to floats and range-check lat/lon."""
    result = {}
    for name in ENCRYPTED_LOCATION_FIELDS:
        value = coords.get(name)
        if value is None:
            result[name] = None
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be a number") from None
        bounds = COORDINATE_RANGES.get(name)
        if bounds and not bounds[0] <= number <= bounds[1]:
            raise ValidationError(f"{name} out of range")
        result[name] = number
    return result


class TelemetryStore:
    """Writes location history and reads settings for registered devices."""

    def __init__(self, session_factory: async_sessionmaker, cipher: AsyncFieldCipher, locks: KeyedLocks):
        self.session_factory = session_factory
        self.cipher = cipher
        self.locks = locks

    async def record_telemetry(
        self,
        device_id: Optional[str],
        location_id: Optional[str],
        coords: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> TelemetryAck:
        """Store one ping: touch the device, upsert info, append the location.

        The device must already be registered. Every value is encrypted
        before the transaction opens, and the three writes commit together.
        """
        require({
            "id": location_id,
            "deviceId": device_id,
            "latitude": coords.get("latitude"),
            "longitude": coords.get("longitude"),
        })
        values = _coordinates(coords)
        meta = {column: value for column, value in (meta or {}).items()
                if column in INFO_FIELD_NAMES and value is not None}
        stamp = timestamp or datetime.utcnow()

        # One batch, so the whole encryption stage shares a single timeout
        envelopes = await self.cipher.encrypt_many({**values, **meta})
        location_envelopes = {name: envelopes[name] for name in ENCRYPTED_LOCATION_FIELDS}
        info_envelopes = {column: envelopes[column] for column in meta}

        async with self.locks.hold(device_id):
            try:
                await retry_on_lock(lambda: self._write_telemetry(
                    device_id, location_id, stamp, location_envelopes, info_envelopes,
                ))
            except SQLAlchemyError as e:
                logger.error(f"Telemetry write failed for device {device_id}: {e}")
                raise StorageFailure() from e

        logger.debug(f"Telemetry stored for device {device_id} (location {location_id})")
        return TelemetryAck(device_id=device_id, location_id=location_id, timestamp=stamp, location=values)

    async def _write_telemetry(self, device_id, location_id, stamp, location_envelopes, info_envelopes):
        async with self.session_factory() as session:
            async with session.begin():
                device = await session.get(Device, device_id)
                if device is None:
                    raise DeviceNotFound()
                device.last_seen_at = stamp

                if info_envelopes:
                    info = await session.get(DeviceInfo, device_id)
                    if info is None:
                        info = DeviceInfo(device_id=device_id)
                        session.add(info)
                    for column, envelope in info_envelopes.items():
                        setattr(info, column, envelope)
                    info.updated_at = stamp

                session.add(DeviceLocation(
                    id=location_id,
                    device_id=device_id,
                    timestamp=stamp,
                    **location_envelopes,
                ))

    async def get_settings(self, device_id: str) -> Dict[str, Any]:
        async with self.session_factory() as session:
            row = await session.get(DeviceSettings, device_id)
        if row is None:
            raise SettingsNotFound()
        return settings_view(row)

    async def update_settings(self, device_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial settings update and return the new view."""
        changes = {key: value for key, value in changes.items() if value is not None}
        interval = changes.get("data_send_interval")
        if interval is not None and not MIN_SEND_INTERVAL <= interval <= MAX_SEND_INTERVAL:
            raise ValidationError(
                f"dataSendInterval must be between {MIN_SEND_INTERVAL} and {MAX_SEND_INTERVAL}"
            )

        async def write():
            async with self.session_factory() as session:
                async with session.begin():
                    now = datetime.utcnow()
                    row = await session.get(DeviceSettings, device_id)
                    if row is None:
                        raise SettingsNotFound()
                    for key, value in changes.items():
                        setattr(row, key, value)
                    row.last_updated = now
                    device = await session.get(Device, device_id)
                    if device is not None:
                        device.last_seen_at = now
                return settings_view(row)

        async with self.locks.hold(device_id):
            try:
                view = await retry_on_lock(write)
            except SQLAlchemyError as e:
                logger.error(f"Settings update failed for device {device_id}: {e}")
                raise StorageFailure() from e

        logger.info(f"Settings updated for device {device_id}: {sorted(changes)}")
        return view

    async def list_locations(
        self,
        device_id: str,
        limit: int = DEFAULT_LOCATIONS_PAGE,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Location history, newest first.

        A row whose envelopes fail to decrypt is still returned; the
        affected fields are None.
        """
        limit = max(1, min(limit, MAX_LOCATIONS_PAGE))
        offset = max(0, offset)
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeviceLocation)
                .where(DeviceLocation.device_id == device_id)
                .order_by(DeviceLocation.timestamp.desc(), DeviceLocation.id.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = result.scalars().all()

        return [await self._location_view(row) for row in rows]

    async def latest_location(self, device_id: str) -> Optional[Dict[str, Any]]:
        locations = await self.list_locations(device_id, limit=1)
        return locations[0] if locations else None

    async def _location_view(self, row: DeviceLocation) -> Dict[str, Any]:
        decrypted = await self.cipher.decrypt_many(
            {name: getattr(row, name) for name in ENCRYPTED_LOCATION_FIELDS}
        )
        corrupt = [name for name, outcome in decrypted.items() if outcome.is_corrupt]
        if corrupt:
            logger.warning(f"Location {row.id} has corrupt fields {corrupt}; returning nulls")
        view = {"id": row.id, "timestamp": row.timestamp.isoformat()}
        for name in ENCRYPTED_LOCATION_FIELDS:
            view[name] = to_float(decrypted[name].value)
        return view
