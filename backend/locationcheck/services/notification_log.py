"""Proximity notification payloads and their audit log.

Only the APNs payload is built here. Delivering it is the job of whatever
push gateway the caller hands it to.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import DeviceNotFound, StorageFailure
from ..models import Device, NotificationRecord
from ..utils.db_utils import retry_on_lock
from .device_registry import require
from .telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)

PROXIMITY = "proximity"
MAX_NOTIFICATIONS_PAGE = 500


def build_proximity_payload(latitude: float, longitude: float, message: str) -> Dict[str, Any]:
    """Silent (content-available) push carrying a location event."""
    return {
        "aps": {"content-available": 1},
        "locationEvent": {
            "latitude": latitude,
            "longitude": longitude,
            "message": message,
        },
    }


class NotificationLog:
    """Builds proximity payloads and appends each one to the notifications table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        store: TelemetryStore,
        default_latitude: float,
        default_longitude: float,
        message: str,
    ):
        self.session_factory = session_factory
        self.store = store
        self.default_latitude = default_latitude
        self.default_longitude = default_longitude
        self.message = message

    async def record_and_build_payload(self, device_id: str) -> Dict[str, Any]:
        require({"deviceId": device_id})

        latitude, longitude = self.default_latitude, self.default_longitude
        latest = await self.store.latest_location(device_id)
        if latest and latest["latitude"] is not None and latest["longitude"] is not None:
            latitude, longitude = latest["latitude"], latest["longitude"]
        else:
            logger.debug(f"No usable location for device {device_id}; using default coordinate")

        payload = build_proximity_payload(latitude, longitude, self.message)

        async def write():
            async with self.session_factory() as session:
                async with session.begin():
                    device = await session.get(Device, device_id)
                    if device is None:
                        raise DeviceNotFound()
                    now = datetime.utcnow()
                    device.last_seen_at = now
                    session.add(NotificationRecord(
                        device_id=device_id,
                        type=PROXIMITY,
                        message=self.message,
                        payload=json.dumps(payload),
                        created_at=now,
                    ))

        async with self.store.locks.hold(device_id):
            try:
                await retry_on_lock(write)
            except SQLAlchemyError as e:
                logger.error(f"Failed to log notification for device {device_id}: {e}")
                raise StorageFailure() from e

        logger.info(f"Proximity payload built for device {device_id}")
        return payload

    async def list_notifications(self, device_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, MAX_NOTIFICATIONS_PAGE))
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRecord)
                .where(NotificationRecord.device_id == device_id)
                .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
                .limit(limit)
            )
            records = result.scalars().all()
        return [
            {
                "id": record.id,
                "type": record.type,
                "message": record.message,
                "payload": json.loads(record.payload) if record.payload else None,
                "createdAt": record.created_at.isoformat(),
            }
            for record in records
        ]
