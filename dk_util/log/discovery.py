import asyncio
from abc import ABC
from abc import abstractmethod
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Annotated
from typing import Literal

from loguru import logger
from pydantic import Discriminator
from pydantic import Field
from pydantic import PrivateAttr
from zeroconf import IPVersion
from zeroconf import ServiceStateChange
from zeroconf import Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser
from zeroconf.asyncio import AsyncServiceInfo
from zeroconf.asyncio import AsyncZeroconf

from dk_util.common.frozen_model import FrozenModel
from dk_util.common.mutable_model import MutableModel
from dk_util.common.primitives import PortNumber


class ServiceFound(FrozenModel):
    """A collector was advertised and resolved to an address."""

    kind: Literal["FOUND"] = "FOUND"
    service_name: str = Field(description="Instance name of the advertised service")
    host: str = Field(description="Resolved IP address")
    port: PortNumber = Field(description="Advertised port")


class ServiceLost(FrozenModel):
    """A previously advertised collector went away."""

    kind: Literal["LOST"] = "LOST"
    service_name: str = Field(description="Instance name of the service that disappeared")


DiscoveryEvent = Annotated[ServiceFound | ServiceLost, Discriminator("kind")]

DiscoveryEventHandler = Callable[[ServiceFound | ServiceLost], Awaitable[None]]


def get_instance_name(full_name: str, service_type: str) -> str:
    """Strip the service type suffix from a fully qualified mDNS name.

    "desk._hurricane-log._tcp.local." -> "desk"
    """
    suffix = f".{service_type}"
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


class ServiceDiscoveryInterface(MutableModel, ABC):
    """Interface for finding remote log collectors on the local network.

    Production code uses ZeroconfServiceDiscovery, which browses mDNS.
    Tests provide fake implementations that emit events on demand.
    """

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether a browse is currently active."""

    @abstractmethod
    async def start(self, service_type: str, on_event: DiscoveryEventHandler) -> None:
        """Begin browsing for service_type, reporting found and lost services to on_event."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop browsing. Safe to call when not running."""


class ZeroconfServiceDiscovery(ServiceDiscoveryInterface):
    """mDNS discovery backed by python-zeroconf's asyncio API."""

    resolve_timeout_ms: int = Field(default=3000, description="How long to wait for a service to resolve")

    _zeroconf: AsyncZeroconf | None = PrivateAttr(default=None)
    _browser: AsyncServiceBrowser | None = PrivateAttr(default=None)
    _on_event: DiscoveryEventHandler | None = PrivateAttr(default=None)
    _pending_tasks: set[asyncio.Task[None]] = PrivateAttr(default_factory=set)

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self, service_type: str, on_event: DiscoveryEventHandler) -> None:
        if self.is_running:
            await self.stop()

        self._on_event = on_event
        self._zeroconf = AsyncZeroconf(ip_version=IPVersion.All)
        self._browser = AsyncServiceBrowser(
            self._zeroconf.zeroconf,
            [service_type],
            handlers=[self._on_service_state_change],
        )
        logger.debug("Started mDNS discovery for {}", service_type)

    async def stop(self) -> None:
        browser = self._browser
        async_zeroconf = self._zeroconf
        self._browser = None
        self._zeroconf = None
        self._on_event = None

        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()

        if browser is not None:
            await browser.async_cancel()
        if async_zeroconf is not None:
            await async_zeroconf.async_close()
            logger.debug("Stopped mDNS discovery")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        # Called by zeroconf on the event loop; resolution has to happen in a task
        task = asyncio.ensure_future(self._handle_state_change(zeroconf, service_type, name, state_change))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _handle_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        on_event = self._on_event
        if on_event is None:
            return

        instance_name = get_instance_name(name, service_type)
        logger.debug("Discovered service {}: {}", instance_name, state_change.name)
        try:
            if state_change is ServiceStateChange.Added:
                found = await self._resolve(zeroconf, service_type, name, instance_name)
                if found is not None:
                    await on_event(found)
            elif state_change is ServiceStateChange.Removed:
                await on_event(ServiceLost(service_name=instance_name))
            else:
                logger.trace("Ignoring {} for {}", state_change.name, instance_name)
        except Exception as e:
            logger.warning("Failed to handle discovery event for {}: {}", instance_name, e)

    async def _resolve(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        instance_name: str,
    ) -> ServiceFound | None:
        info = AsyncServiceInfo(service_type, name)
        is_resolved = await info.async_request(zeroconf, self.resolve_timeout_ms)
        if not is_resolved or not info.port:
            logger.warning("Could not resolve service {}: missing host or port", instance_name)
            return None

        # Prefer IPv4 so the address can be used in a URL without brackets
        addresses = info.parsed_addresses(IPVersion.V4Only) or info.parsed_addresses()
        if not addresses:
            logger.warning("Could not resolve service {}: no addresses", instance_name)
            return None

        logger.debug("Resolved service {} to {}:{}", instance_name, addresses[0], info.port)
        return ServiceFound(service_name=instance_name, host=addresses[0], port=PortNumber(info.port))
