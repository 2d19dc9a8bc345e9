"""Realtime device channel over WebSocket.

Each device holds at most one authenticated connection. Frames are JSON text:

    client -> server   {"event": "ingest-telemetry", "data": {...}, "ack": 7}
    server ack         {"ack": 7, "data": {...}}
    server event       {"event": "telemetry-received", "data": {...}}

A successful ingest is answered twice with the same payload: once as the
acknowledgement and once as a "telemetry-received" event, so clients written
against either delivery style keep working. "query-interval" is answered by
acknowledgement only.
"""
import asyncio
import enum
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from fastapi import WebSocket, WebSocketDisconnect, status

from ..errors import Internal, ServiceError, Unauthenticated, Unauthorized, ValidationError
from .device_registry import DeviceRegistry, INFO_FIELD_NAMES
from .telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)

INGEST_TELEMETRY = "ingest-telemetry"
QUERY_INTERVAL = "query-interval"
TELEMETRY_RECEIVED = "telemetry-received"
SETTINGS_UPDATED = "settings-updated"
ERROR = "error"

# client-facing name -> DeviceInfo column
INFO_COLUMNS = {client: column for column, client in INFO_FIELD_NAMES.items()}


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class DeviceConnection:
    """One device's socket and its position in the connection lifecycle."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.device_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING

    async def send(self, frame: Dict[str, Any]):
        await self.websocket.send_text(json.dumps(frame, default=str))

    async def send_ack(self, ack_id: Any, data: Dict[str, Any]):
        await self.send({"ack": ack_id, "data": data})

    async def send_event(self, event: str, data: Dict[str, Any]):
        await self.send({"event": event, "data": data})


class ChannelRegistry:
    """Tracks the live connection of each device so settings can be pushed."""

    def __init__(self):
        self.active_connections: Dict[str, DeviceConnection] = {}
        self._lock = asyncio.Lock()

    async def admit(self, connection: DeviceConnection):
        """Register an authenticated connection. A newer socket replaces an older one."""
        async with self._lock:
            previous = self.active_connections.get(connection.device_id)
            self.active_connections[connection.device_id] = connection
        if previous is not None and previous is not connection:
            logger.info(f"Replacing existing connection for device {connection.device_id}")
            previous.state = ConnectionState.CLOSED
            try:
                await previous.websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
            except RuntimeError as e:
                logger.debug(f"Previous socket already closed: {e}")
        logger.info(f"Device connected: {connection.device_id}. Total connections: {len(self.active_connections)}")

    async def release(self, connection: DeviceConnection):
        async with self._lock:
            if self.active_connections.get(connection.device_id) is connection:
                del self.active_connections[connection.device_id]
        logger.info(f"Device disconnected: {connection.device_id}. Total connections: {len(self.active_connections)}")

    async def push(self, device_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Send an event to a device if it is connected."""
        async with self._lock:
            connection = self.active_connections.get(device_id)
        if connection is None:
            return False
        try:
            await connection.send_event(event, data)
            return True
        except Exception as e:
            logger.debug(f"Failed to push {event} to {device_id}: {e}")
            await self.release(connection)
            return False

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)


Handler = Callable[[DeviceConnection, Dict[str, Any]], Awaitable[Tuple[Dict[str, Any], Optional[str]]]]


class RealtimeChannel:
    """Authenticates sockets at connect time and runs the event protocol."""

    def __init__(
        self,
        registry: DeviceRegistry,
        store: TelemetryStore,
        channels: ChannelRegistry,
        ack_timeout: float = 10.0,
    ):
        self.registry = registry
        self.store = store
        self.channels = channels
        self.ack_timeout = ack_timeout
        self.handlers: Dict[str, Handler] = {
            INGEST_TELEMETRY: self.handle_ingest,
            QUERY_INTERVAL: self.handle_query_interval,
        }
        # Events whose failures are also reported as an "error" event
        self.broadcast_errors = {INGEST_TELEMETRY}
        # Events answered only through the acknowledgement
        self.ack_only = {QUERY_INTERVAL}

    async def serve(self, websocket: WebSocket, token: Optional[str]):
        """Drive one connection from handshake to close."""
        connection = DeviceConnection(websocket)
        connection.state = ConnectionState.AUTHENTICATING
        try:
            if not token:
                raise Unauthenticated()
            connection.device_id = await self.registry.authenticate(token)
        except (Unauthenticated, Unauthorized) as e:
            connection.state = ConnectionState.CLOSED
            logger.warning(f"Refused realtime connection: {e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return
        except ServiceError as e:
            connection.state = ConnectionState.CLOSED
            logger.error(f"Realtime authentication failed: {e.message}")
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return

        await websocket.accept()
        connection.state = ConnectionState.AUTHENTICATED
        await self.channels.admit(connection)
        try:
            while connection.state is ConnectionState.AUTHENTICATED:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # Socket closed underneath us, usually replaced by a newer connection
            logger.debug(f"Connection for {connection.device_id} closed mid-exchange: {e}")
        finally:
            connection.state = ConnectionState.CLOSED
            await self.channels.release(connection)

    async def dispatch(self, connection: DeviceConnection, raw: str):
        """Route one client frame to its handler and deliver the reply."""
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await connection.send_event(ERROR, ValidationError("Malformed frame").to_dict())
            return

        event = frame["event"]
        ack_id = frame.get("ack")
        data = frame.get("data")
        if not isinstance(data, dict):
            data = {}
        if ack_id is None and event in self.ack_only:
            await connection.send_event(ERROR, ValidationError(f"{event} requires an ack id").to_dict())
            return

        mirror = None
        try:
            handler = self.handlers.get(event)
            if handler is None:
                raise ValidationError(f"Unknown event: {event}")
            payload, mirror = await asyncio.wait_for(handler(connection, data), timeout=self.ack_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Event {event} from {connection.device_id} timed out after {self.ack_timeout}s")
            payload = {"success": False, "error": "timeout", "message": "Request timed out"}
        except ServiceError as e:
            payload = e.to_dict()
        except Exception:
            logger.exception(f"Error processing {event} from {connection.device_id}")
            payload = Internal().to_dict()

        failed = not payload.get("success", False)
        if ack_id is not None:
            await connection.send_ack(ack_id, payload)

        if failed:
            if event in self.broadcast_errors:
                await connection.send_event(ERROR, payload)
        elif mirror:
            await connection.send_event(mirror, payload)

    def _check_owner(self, connection: DeviceConnection, data: Dict[str, Any]):
        device_id = data.get("deviceId")
        if device_id is not None and device_id != connection.device_id:
            raise Unauthorized("deviceId does not match credential")

    async def handle_ingest(self, connection: DeviceConnection, data: Dict[str, Any]):
        self._check_owner(connection, data)
        meta = {column: data.get(client) for client, column in INFO_COLUMNS.items()}
        ack = await self.store.record_telemetry(
            device_id=data.get("deviceId"),
            location_id=str(uuid.uuid4()),
            coords={
                "latitude": data.get("latitude"),
                "longitude": data.get("longitude"),
                "altitude": data.get("altitude"),
                "accuracy": data.get("accuracy"),
            },
            meta=meta,
        )
        return ack.to_dict(), TELEMETRY_RECEIVED

    async def handle_query_interval(self, connection: DeviceConnection, data: Dict[str, Any]):
        self._check_owner(connection, data)
        device_id = data.get("deviceId")
        if not device_id:
            raise ValidationError("Missing required fields: deviceId", missing=["deviceId"])
        settings = await self.store.get_settings(device_id)
        return {
            "success": True,
            "data": {
                "dataSendInterval": settings["dataSendInterval"],
                "notificationEnabled": settings["notificationEnabled"],
            },
        }, None
