"""Device registration and identity lifecycle."""
import hmac
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import CredentialInvalid, DeviceNotFound, StorageFailure, ValidationError
from ..models import AuthCredential, Device, DeviceInfo, DeviceSettings, DEFAULT_DATA_SEND_INTERVAL
from ..utils.db_utils import KeyedLocks, retry_on_lock
from .credentials import CredentialService
from .field_cipher import AsyncFieldCipher

logger = logging.getLogger(__name__)

# DeviceInfo column -> client-facing name
INFO_FIELD_NAMES = {
    "battery_level": "batteryLevel",
    "model": "deviceModel",
    "name": "deviceName",
    "os_version": "osVersion",
    "screen_resolution": "screenResolution",
    "app_version": "appVersion",
}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require(fields: Dict[str, Any]):
    """Raise ValidationError listing every blank entry of fields."""
    missing = [name for name, value in fields.items() if is_blank(value)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing=missing)


class DeviceRegistry:
    """Creates devices, rotates their credentials, and authenticates tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cipher: AsyncFieldCipher,
        credentials: CredentialService,
        locks: KeyedLocks,
    ):
        self.session_factory = session_factory
        self.cipher = cipher
        self.credentials = credentials
        self.locks = locks

    async def register(
        self,
        device_id: Optional[str],
        model: Optional[str],
        name: Optional[str],
        os_version: Optional[str],
        screen_resolution: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> str:
        """Register a device or refresh an existing one. Returns a new token.

        Device, info, default settings and credential are written in one
        transaction. Re-registering rotates the credential; the previous
        token stops authenticating immediately.
        """
        require({
            "deviceId": device_id,
            "deviceModel": model,
            "deviceName": name,
            "osVersion": os_version,
        })

        envelopes = await self.cipher.encrypt_many({
            "model": model,
            "name": name,
            "os_version": os_version,
            "screen_resolution": screen_resolution,
            "app_version": app_version,
        })
        token = self.credentials.issue(device_id)

        async with self.locks.hold(device_id):
            try:
                created = await retry_on_lock(
                    lambda: self._write_registration(device_id, envelopes, token)
                )
            except SQLAlchemyError as e:
                logger.error(f"Registration failed for device {device_id}: {e}")
                raise StorageFailure() from e

        if created:
            logger.info(f"New device registered: {device_id}")
        else:
            logger.info(f"Device re-registered, credential rotated: {device_id}")
        return token

    async def _write_registration(self, device_id: str, envelopes: Dict[str, Optional[str]], token: str) -> bool:
        now = datetime.utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                device = await session.get(Device, device_id)
                created = device is None
                if created:
                    session.add(Device(device_id=device_id, created_at=now, last_seen_at=now))
                else:
                    device.last_seen_at = now

                info = await session.get(DeviceInfo, device_id)
                if info is None:
                    info = DeviceInfo(device_id=device_id)
                    session.add(info)
                for column, envelope in envelopes.items():
                    if envelope is not None:
                        setattr(info, column, envelope)
                info.updated_at = now

                if await session.get(DeviceSettings, device_id) is None:
                    session.add(DeviceSettings(
                        device_id=device_id,
                        data_send_interval=DEFAULT_DATA_SEND_INTERVAL,
                        notification_enabled=True,
                        power_save_mode=False,
                        last_updated=now,
                    ))

                credential = await session.get(AuthCredential, device_id)
                if credential is None:
                    session.add(AuthCredential(device_id=device_id, token=token, created_at=now))
                else:
                    credential.token = token
                    credential.created_at = now
        return created

    async def authenticate(self, token: str) -> str:
        """Verify a token and check it is the device's current credential.

        Raises:
            Unauthorized: invalid, expired, or rotated-away token.
        """
        device_id = self.credentials.verify(token)
        async with self.session_factory() as session:
            stored = await session.get(AuthCredential, device_id)
        if stored is None or not hmac.compare_digest(stored.token, token):
            logger.warning(f"Rejected superseded token for device {device_id}")
            raise CredentialInvalid("Token has been revoked")
        return device_id

    async def get_device(self, device_id: str) -> Dict[str, Any]:
        """Device identity plus decrypted metadata."""
        async with self.session_factory() as session:
            device = await session.get(Device, device_id)
            if device is None:
                raise DeviceNotFound()
            info = await session.get(DeviceInfo, device_id)

        result = {
            "deviceId": device.device_id,
            "createdAt": device.created_at.isoformat(),
            "lastSeenAt": device.last_seen_at.isoformat(),
        }
        envelopes = {column: getattr(info, column) if info else None for column in INFO_FIELD_NAMES}
        decrypted = await self.cipher.decrypt_many(envelopes)
        for column, client_name in INFO_FIELD_NAMES.items():
            result[client_name] = decrypted[column].value
        try:
            result["batteryLevel"] = float(result["batteryLevel"])
        except (TypeError, ValueError):
            result["batteryLevel"] = None
        return result
