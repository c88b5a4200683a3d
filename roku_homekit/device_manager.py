from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from .config import Settings
from .controllers import RokuController, RokuError, controllers_for_hosts, discover
from .controllers.roku import App, DeviceInfo
from .errors import DeviceSetupError, TransportError
from .television import TelevisionSync

logger = logging.getLogger(__name__)

DiscoverFunc = Callable[[], Awaitable[List[RokuController]]]
TransportFactory = Callable[[DeviceInfo, int], Any]


@dataclass
class ManagedDevice:
    """Everything one Roku owns: its client, sync, HomeKit server and refresh task."""

    client: RokuController
    info: DeviceInfo
    apps: List[App]
    sync: TelevisionSync
    transport: Any
    accessory: Any
    port: int
    task: Optional["asyncio.Task[None]"] = None

    @property
    def name(self) -> str:
        return self.info.display_name()


class DeviceManager:
    def __init__(
        self,
        settings: Settings,
        *,
        discover: Optional[DiscoverFunc] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.settings = settings
        self._discover = discover or self._discover_devices
        self._transport_factory = transport_factory or self._build_transport
        self._devices: List[ManagedDevice] = []
        self._stop_event = asyncio.Event()

    @property
    def devices(self) -> List[ManagedDevice]:
        return list(self._devices)

    async def startup(self) -> List[ManagedDevice]:
        """Discover devices and build an accessory for each one that answers."""
        logger.info("Searching for Rokus...")
        clients = await self._discover()
        if not clients:
            logger.warning("No Roku devices found")

        for client in clients:
            port = self.settings.port + len(self._devices)
            try:
                device = await self.setup_device(client, port=port)
            except (DeviceSetupError, TransportError) as exc:
                logger.error("Skipping %s: %s", client, exc)
                await client.close()
                continue
            except Exception:
                logger.exception("Skipping %s: unexpected setup failure", client)
                await client.close()
                continue
            self._devices.append(device)

        logger.info("Set up %d of %d Roku device(s)", len(self._devices), len(clients))
        return self.devices

    async def setup_device(self, client: RokuController, *, port: int) -> ManagedDevice:
        try:
            info = await client.device_info()
        except RokuError as exc:
            raise DeviceSetupError(f"unable to get device info for {client}: {exc}") from exc

        try:
            apps = await client.apps()
        except RokuError as exc:
            logger.warning("Error getting apps for %r: %s", info.display_name(), exc)
            apps = []

        sync = TelevisionSync(client, info, refresh_interval=self.settings.refresh_interval)
        transport = self._transport_factory(info, port)
        accessory = transport.publish(info, apps, sync)
        return ManagedDevice(
            client=client,
            info=info,
            apps=apps,
            sync=sync,
            transport=transport,
            accessory=accessory,
            port=port,
        )

    async def start(self) -> None:
        """Start every HomeKit server and refresh loop."""
        await asyncio.gather(*(self._start_device(device) for device in list(self._devices)))

    async def shutdown(self) -> None:
        """Stop refresh loops first, then every HomeKit server so pairings are flushed."""
        self._stop_event.set()
        tasks = [device.task for device in self._devices if device.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.gather(*(self._stop_device(device) for device in self._devices))

    async def _start_device(self, device: ManagedDevice) -> None:
        logger.info("Starting transport for %r...", device.name)
        try:
            await device.transport.start()
        except TransportError as exc:
            logger.error("Skipping %r: %s", device.name, exc)
            await self._drop(device)
            return
        except Exception:
            logger.exception("Skipping %r: unexpected transport failure", device.name)
            await self._drop(device)
            return
        device.task = asyncio.create_task(
            device.sync.run(self._stop_event), name=f"refresh-{device.info.serial_number}"
        )

    async def _drop(self, device: ManagedDevice) -> None:
        self._devices.remove(device)
        await device.client.close()

    async def _stop_device(self, device: ManagedDevice) -> None:
        try:
            await device.transport.stop()
        except Exception:
            logger.exception("Error stopping transport for %r", device.name)
        finally:
            await device.client.close()

    async def _discover_devices(self) -> List[RokuController]:
        if self.settings.hosts:
            return controllers_for_hosts(self.settings.hosts)
        return await discover(self.settings.discovery_timeout)

    def _build_transport(self, info: DeviceInfo, port: int) -> Any:
        # pyhap is only needed once a real accessory server is built
        from .controllers.homekit import HomeKitTransport

        return HomeKitTransport(
            pin=self.settings.hap_pincode,
            storage_path=self.settings.device_storage(info.serial_number),
            port=port,
        )
