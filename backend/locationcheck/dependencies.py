"""Service container wired once per application instance."""
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .config import Settings, get_database_url
from .database import build_engine, build_session_factory
from .services.credentials import CredentialService
from .services.device_registry import DeviceRegistry
from .services.field_cipher import AsyncFieldCipher, FieldCipher
from .services.notification_log import NotificationLog
from .services.realtime_channel import ChannelRegistry, RealtimeChannel
from .services.telemetry_store import TelemetryStore
from .services.worker_pool import WorkerPool
from .utils.db_utils import KeyedLocks


@dataclass
class Services:
    engine: AsyncEngine
    session_factory: async_sessionmaker
    pool: WorkerPool
    cipher: AsyncFieldCipher
    credentials: CredentialService
    registry: DeviceRegistry
    store: TelemetryStore
    notifications: NotificationLog
    channels: ChannelRegistry
    realtime: RealtimeChannel


def build_services(config: Settings) -> Services:
    engine = build_engine(get_database_url(config))
    session_factory = build_session_factory(engine)
    pool = WorkerPool(
        workers=config.cipher_workers,
        queue_size=config.cipher_queue_size,
        timeout=config.cipher_timeout_seconds,
    )
    cipher = AsyncFieldCipher(
        FieldCipher(config.field_key, iterations=config.kdf_iterations),
        pool,
        timeout=config.cipher_timeout_seconds,
    )
    credentials = CredentialService(config.jwt_secret, expires_days=config.token_expiry_days)
    locks = KeyedLocks()
    registry = DeviceRegistry(session_factory, cipher, credentials, locks)
    store = TelemetryStore(session_factory, cipher, locks)
    notifications = NotificationLog(
        session_factory,
        store,
        default_latitude=config.default_latitude,
        default_longitude=config.default_longitude,
        message=config.proximity_message,
    )
    channels = ChannelRegistry()
    realtime = RealtimeChannel(registry, store, channels, ack_timeout=config.ack_timeout_seconds)
    return Services(
        engine=engine,
        session_factory=session_factory,
        pool=pool,
        cipher=cipher,
        credentials=credentials,
        registry=registry,
        store=store,
        notifications=notifications,
        channels=channels,
        realtime=realtime,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
