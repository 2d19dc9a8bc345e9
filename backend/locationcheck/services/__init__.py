"""Services for device identity, telemetry storage and the realtime channel."""
from .field_cipher import FieldCipher, AsyncFieldCipher
from .credentials import CredentialService
from .device_registry import DeviceRegistry
from .telemetry_store import TelemetryStore
from .notification_log import NotificationLog
from .realtime_channel import RealtimeChannel, ChannelRegistry
from .worker_pool import WorkerPool

__all__ = [
    "FieldCipher",
    "AsyncFieldCipher",
    "CredentialService",
    "DeviceRegistry",
    "TelemetryStore",
    "NotificationLog",
    "RealtimeChannel",
    "ChannelRegistry",
    "WorkerPool",
]
