import asyncio
import json
from abc import ABC
from abc import abstractmethod
from collections import deque
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Coroutine
from typing import Any
from typing import Final
from typing import NamedTuple

import websockets.asyncio.client
from loguru import logger
from websockets import ClientConnection

from dk_util.config.data_types import REMOTE_LOG_SERVICE_TYPE
from dk_util.log.data_types import LogRecord
from dk_util.log.data_types import RemoteTransportState
from dk_util.log.discovery import ServiceDiscoveryInterface
from dk_util.log.discovery import ServiceFound
from dk_util.log.discovery import ServiceLost
from dk_util.log.discovery import ZeroconfServiceDiscovery
from dk_util.log.formatting import build_wire_payload

DEFAULT_RECONNECT_INTERVAL_SECONDS: Final[float] = 5.0

DEFAULT_CONNECT_TIMEOUT_SECONDS: Final[float] = 10.0

DEFAULT_MAX_BUFFER_SIZE: Final[int] = 100


class RemoteLogConnectionInterface(ABC):
    """One open connection to a log collector."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send one text frame. Raises if the connection is no longer usable."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def receive_messages(self) -> AsyncIterator[str | bytes]:
        """Yield inbound messages until the peer closes; raises on connection errors."""


class WebSocketLogConnection(RemoteLogConnectionInterface):
    """Adapts a websockets client connection to the log connection interface."""

    def __init__(self, websocket: ClientConnection) -> None:
        self._websocket = websocket

    async def send(self, text: str) -> None:
        await self._websocket.send(text)

    async def close(self) -> None:
        await self._websocket.close()

    async def receive_messages(self) -> AsyncIterator[str | bytes]:
        async for message in self._websocket:
            yield message


ConnectFunction = Callable[[str], Awaitable[RemoteLogConnectionInterface]]

StatusCallback = Callable[[bool], None]


async def connect_websocket(url: str) -> RemoteLogConnectionInterface:
    websocket = await websockets.asyncio.client.connect(url)
    return WebSocketLogConnection(websocket)


def build_websocket_url(host: str, port: int, path: str | None = None) -> str:
    """Build ws://host:port<path>, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"ws://{host}:{port}{path or ''}"


class _Endpoint(NamedTuple):
    host: str
    port: int
    path: str | None


class RemoteLogTransport:
    """Streams log records to a collector over a reconnecting WebSocket.

    While no connection is open, records are kept in a bounded buffer that drops the
    oldest entry when full; the buffer is flushed in order as soon as a connection is
    established. Records sent while connected go through a single background pump so
    that frames leave in submission order. Network and discovery failures are logged
    and never reach the caller of send_log().
    """

    def __init__(
        self,
        discovery: ServiceDiscoveryInterface | None = None,
        connector: ConnectFunction | None = None,
        reconnect_interval_seconds: float = DEFAULT_RECONNECT_INTERVAL_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
    ) -> None:
        self.discovery = discovery if discovery is not None else ZeroconfServiceDiscovery()
        self.connector = connector if connector is not None else connect_websocket
        self.reconnect_interval_seconds = reconnect_interval_seconds
        self.connect_timeout_seconds = connect_timeout_seconds

        self._state = RemoteTransportState.DISABLED
        self._is_enabled = False
        self._is_connecting = False
        self._connection: RemoteLogConnectionInterface | None = None
        self._connected_service_name: str | None = None
        self._manual_endpoint: _Endpoint | None = None
        self._service_name: str | None = None
        self._status_callback: StatusCallback | None = None

        self._buffer: deque[dict[str, Any]] = deque(maxlen=max_buffer_size)
        self._outbound: deque[dict[str, Any]] = deque()

        self._pump_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> RemoteTransportState:
        return self._state

    @property
    def is_enabled(self) -> bool:
        return self._is_enabled

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def buffered_payloads(self) -> list[dict[str, Any]]:
        """Snapshot of records waiting for a connection, oldest first."""
        return list(self._buffer)

    def set_status_callback(self, callback: StatusCallback | None) -> None:
        """Register a callback invoked with True on connect and False on disconnect."""
        self._status_callback = callback

    async def enable(
        self,
        is_auto_discover: bool = True,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        service_name: str | None = None,
    ) -> None:
        """Start streaming, either to a discovered collector or to an explicit endpoint."""
        if self._is_enabled:
            logger.debug("Remote logging already enabled")
            return

        if is_auto_discover:
            self._is_enabled = True
            self._manual_endpoint = None
            self._service_name = service_name
            logger.info("Enabling remote logging with service discovery")
            await self._start_discovery()
        elif host is not None and port is not None:
            self._is_enabled = True
            self._manual_endpoint = _Endpoint(host, port, path)
            logger.info("Enabling remote logging to {}", build_websocket_url(host, port, path))
            await self.connect(host, port, path)
        else:
            logger.error("Remote logging needs either auto-discovery or an explicit host and port")

    async def connect(self, host: str, port: int, path: str | None = None) -> None:
        """Open a connection to ws://host:port<path>, unless one is open or in flight."""
        await self._connect(_Endpoint(host, port, path), service_name=None)

    def send_log(self, record: LogRecord) -> None:
        """Queue one record for delivery. Never raises."""
        if not self._is_enabled:
            return

        payload = build_wire_payload(record)
        if self._connection is None or not _is_loop_running():
            self._buffer.append(payload)
            logger.trace("Buffered log record, {} waiting", len(self._buffer))
            return

        self._outbound.append(payload)
        self._ensure_pump()

    async def disable(self) -> None:
        """Stop streaming, close the connection and discard buffered records."""
        if not self._is_enabled:
            return

        logger.info("Disabling remote logging")
        self._is_enabled = False
        was_connected = self._connection is not None
        tasks = (self._reconnect_task, self._reader_task, self._pump_task)
        connection = self._detach_connection()

        if connection is not None:
            await _close_quietly(connection)
        await self._stop_discovery()
        await self._cancel_tasks(*tasks)
        self._reconnect_task = None

        self._buffer.clear()
        self._outbound.clear()
        self._manual_endpoint = None
        self._service_name = None
        self._set_state(RemoteTransportState.DISABLED)
        if was_connected:
            self._notify_status(False)

    async def reconnect(self) -> None:
        """Drop the current connection (if any) and try the endpoint or discovery again immediately."""
        if not self._is_enabled:
            logger.debug("Remote logging is disabled, not reconnecting")
            return

        if self._connection is not None:
            connection = self._detach_connection()
            self._notify_status(False)
            if connection is not None:
                await _close_quietly(connection)

        await self._cancel_tasks(self._reconnect_task)
        self._reconnect_task = None
        await self._retry()

    async def drain(self) -> None:
        """Wait until every record handed to a live connection has been sent."""
        while self._pump_task is not None and not self._pump_task.done():
            await asyncio.gather(self._pump_task, return_exceptions=True)
        # the reader and reconnect loops live as long as the connection, so only close tasks are awaited
        pending = [
            task for task in self._background_tasks if task is not self._reconnect_task and task is not self._reader_task
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- connection lifecycle --

    async def _connect(self, endpoint: _Endpoint, service_name: str | None) -> None:
        if not self._is_enabled:
            logger.debug("Remote logging is disabled, not connecting")
            return
        if self._is_connecting:
            logger.debug("Connection attempt already in progress, skipping")
            return
        if self._connection is not None:
            logger.debug("Already connected, skipping")
            return

        self._is_connecting = True
        self._set_state(RemoteTransportState.CONNECTING)
        url = build_websocket_url(endpoint.host, endpoint.port, endpoint.path)
        logger.debug("Connecting to log collector at {}", url)
        try:
            connection = await asyncio.wait_for(self.connector(url), timeout=self.connect_timeout_seconds)
        except TimeoutError:
            logger.warning("Timed out connecting to log collector at {}", url)
            self._handle_disconnect()
            return
        except Exception as e:
            logger.warning("Failed to connect to log collector at {}: {}", url, e)
            self._handle_disconnect()
            return
        finally:
            # also reached when the attempt is cancelled by reconnect() or disable()
            self._is_connecting = False

        if not self._is_enabled:
            # disabled while the connection was being established
            await _close_quietly(connection)
            return

        self._connection = connection
        self._connected_service_name = service_name
        self._set_state(RemoteTransportState.CONNECTED)
        logger.info("Connected to log collector at {}", url)
        self._notify_status(True)
        self._flush_buffer()
        self._reader_task = self._spawn(self._read_messages(connection))

    def _detach_connection(self) -> RemoteLogConnectionInterface | None:
        """Forget the current connection, moving unsent records back to the buffer."""
        connection = self._connection
        self._connection = None
        self._connected_service_name = None
        self._is_connecting = False

        current_task = asyncio.current_task()
        for task in (self._reader_task, self._pump_task):
            if task is not None and task is not current_task:
                task.cancel()
        self._reader_task = None
        self._pump_task = None

        if self._outbound:
            pending = list(self._outbound) + list(self._buffer)
            self._outbound.clear()
            self._buffer.clear()
            self._buffer.extend(pending)

        self._set_state(RemoteTransportState.DISCONNECTED if self._is_enabled else RemoteTransportState.DISABLED)
        return connection

    def _handle_disconnect(self) -> None:
        """Shared path for connection failure, peer close, send failure and lost services."""
        connection = self._detach_connection()
        self._notify_status(False)
        if connection is not None:
            self._spawn(_close_quietly(connection))
        if self._is_enabled:
            self._start_reconnect()

    async def _read_messages(self, connection: RemoteLogConnectionInterface) -> None:
        try:
            async for message in connection.receive_messages():
                logger.debug("Message from log collector: {}", message)
            logger.info("Log collector closed the connection")
        except Exception as e:
            logger.warning("Log collector connection failed: {}", e)
        if self._connection is connection:
            self._handle_disconnect()

    # -- sending --

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        logger.debug("Sending {} buffered log records", len(self._buffer))
        self._outbound.extendleft(reversed(self._buffer))
        self._buffer.clear()
        self._ensure_pump()

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = self._spawn(self._pump_outbound())

    async def _pump_outbound(self) -> None:
        while self._outbound and self._connection is not None:
            connection = self._connection
            payload = self._outbound[0]
            try:
                await connection.send(json.dumps(payload, ensure_ascii=False))
            except Exception as e:
                logger.warning("Failed to send log record: {}", e)
                # the unsent record is still at the head of the outbound queue and gets re-buffered
                if self._connection is connection:
                    self._handle_disconnect()
                return
            self._outbound.popleft()

    # -- discovery and reconnection --

    async def _start_discovery(self) -> None:
        self._set_state(RemoteTransportState.DISCOVERING)
        try:
            await self.discovery.start(REMOTE_LOG_SERVICE_TYPE, self._on_discovery_event)
        except Exception as e:
            logger.warning("Failed to start service discovery: {}", e)

    async def _stop_discovery(self) -> None:
        if not self.discovery.is_running:
            return
        try:
            await self.discovery.stop()
        except Exception as e:
            logger.warning("Failed to stop service discovery: {}", e)

    async def _on_discovery_event(self, event: ServiceFound | ServiceLost) -> None:
        if not self._is_enabled:
            return
        match event:
            case ServiceFound():
                if self._service_name is not None and event.service_name != self._service_name:
                    logger.debug("Skipping service {}, waiting for {}", event.service_name, self._service_name)
                    return
                await self._connect(_Endpoint(event.host, event.port, None), service_name=event.service_name)
            case ServiceLost():
                logger.info("Log collector service {} went away", event.service_name)
                if self._connection is not None and self._connected_service_name == event.service_name:
                    self._handle_disconnect()

    def _start_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.debug("Reconnecting in {} seconds", self.reconnect_interval_seconds)
        self._reconnect_task = self._spawn(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reconnect_interval_seconds)
            if not self._is_enabled or self._is_connecting or self._connection is not None:
                return
            logger.debug("Trying to reconnect to log collector")
            await self._retry()

    async def _retry(self) -> None:
        if self._manual_endpoint is not None:
            await self._connect(self._manual_endpoint, service_name=None)
        else:
            await self._stop_discovery()
            await self._start_discovery()

    # -- helpers --

    def _set_state(self, state: RemoteTransportState) -> None:
        if state != self._state:
            logger.debug("Remote log transport: {} -> {}", self._state, state)
            self._state = state

    def _notify_status(self, is_connected: bool) -> None:
        if self._status_callback is None:
            return
        try:
            self._status_callback(is_connected)
        except Exception as e:
            logger.warning("Remote log status callback failed: {}", e)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _cancel_tasks(self, *tasks: asyncio.Task[None] | None) -> None:
        current_task = asyncio.current_task()
        to_wait = [task for task in tasks if task is not None and task is not current_task and not task.done()]
        for task in to_wait:
            task.cancel()
        if to_wait:
            await asyncio.gather(*to_wait, return_exceptions=True)


def _is_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


async def _close_quietly(connection: RemoteLogConnectionInterface) -> None:
    try:
        await connection.close()
    except Exception as e:
        logger.debug("Error while closing log collector connection: {}", e)
