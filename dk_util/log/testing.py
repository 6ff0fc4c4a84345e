"""Shared fakes for log router and remote transport tests."""

import asyncio
from collections.abc import AsyncIterator

from pydantic import PrivateAttr

from dk_util.log.discovery import DiscoveryEventHandler
from dk_util.log.discovery import ServiceDiscoveryInterface
from dk_util.log.discovery import ServiceFound
from dk_util.log.discovery import ServiceLost
from dk_util.log.remote_transport import RemoteLogConnectionInterface


class FakeLogConnection(RemoteLogConnectionInterface):
    """In-memory connection that records sent frames and can be closed from either side."""

    def __init__(self, is_send_failing: bool = False) -> None:
        self.sent: list[str] = []
        self.is_closed = False
        self.is_send_failing = is_send_failing
        self._inbound: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, text: str) -> None:
        if self.is_closed or self.is_send_failing:
            raise ConnectionError("fake connection is not writable")
        self.sent.append(text)

    async def close(self) -> None:
        self.is_closed = True
        self._inbound.put_nowait(None)

    async def receive_messages(self) -> AsyncIterator[str | bytes]:
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    def push_message(self, message: str) -> None:
        """Simulate the collector sending a message."""
        self._inbound.put_nowait(message)

    def close_from_peer(self) -> None:
        """Simulate the collector closing the connection."""
        self.is_closed = True
        self._inbound.put_nowait(None)


class FakeConnector:
    """Connect function that hands out FakeLogConnections and records requested URLs."""

    def __init__(self, is_failing: bool = False, is_hanging: bool = False) -> None:
        self.urls: list[str] = []
        self.connections: list[FakeLogConnection] = []
        self.is_failing = is_failing
        self.is_hanging = is_hanging

    async def __call__(self, url: str) -> RemoteLogConnectionInterface:
        self.urls.append(url)
        if self.is_hanging:
            await asyncio.Event().wait()
        if self.is_failing:
            raise ConnectionRefusedError(f"nothing listening at {url}")
        connection = FakeLogConnection()
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeLogConnection:
        return self.connections[-1]


class FakeServiceDiscovery(ServiceDiscoveryInterface):
    """Discovery that only reports what the test tells it to."""

    start_count: int = 0
    stop_count: int = 0
    service_types: list[str] = []

    _on_event: DiscoveryEventHandler | None = PrivateAttr(default=None)

    @property
    def is_running(self) -> bool:
        return self._on_event is not None

    async def start(self, service_type: str, on_event: DiscoveryEventHandler) -> None:
        self.start_count += 1
        self.service_types.append(service_type)
        self._on_event = on_event

    async def stop(self) -> None:
        self.stop_count += 1
        self._on_event = None

    async def emit(self, event: ServiceFound | ServiceLost) -> None:
        assert self._on_event is not None, "discovery was not started"
        await self._on_event(event)


class CapturingConsole:
    """Console sink that keeps every written line."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, line: str) -> None:
        self.lines.append(line)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)
