from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from pyhap.accessory import Accessory
from pyhap.accessory_driver import AccessoryDriver
from pyhap.characteristic import Characteristic
from pyhap.const import CATEGORY_TELEVISION

from ..errors import TransportError
from .roku import App, DeviceInfo

logger = logging.getLogger(__name__)

PERSIST_FILE = "accessory.state"

SLEEP_DISCOVERY_ALWAYS_DISCOVERABLE = 1
INPUT_SOURCE_TYPE_APPLICATION = 10
IS_CONFIGURED = 1
VISIBILITY_SHOWN = 0

# Upper bound for a HomeKit read waiting on the device.
READ_TIMEOUT = 5.0
STOP_TIMEOUT = 10.0


class TelevisionAccessory(Accessory):
    """HomeKit Television accessory backed by a ``TelevisionSync``.

    HAP-python calls characteristic callbacks synchronously on the driver's
    own loop. Writes are handed to the application loop without waiting.
    Reads wait on the application loop for up to ``READ_TIMEOUT`` seconds
    and otherwise answer with the value the refresh loop last pushed.
    """

    category = CATEGORY_TELEVISION

    def __init__(self, driver: Any, info: DeviceInfo, sync: Any, loop: asyncio.AbstractEventLoop) -> None:
        name = info.display_name()
        super().__init__(driver, name)
        self.sync = sync
        self.app_loop = loop
        self.input_sources: List[Any] = []

        self.set_info_service(
            firmware_revision=info.firmware,
            manufacturer=info.vendor_name,
            model=info.model,
            serial_number=info.serial_number,
        )
        self.get_service("AccessoryInformation").configure_char(
            "Identify", setter_callback=self._on_identify
        )

        self.tv = self.add_preload_service(
            "Television",
            ["Name", "ConfiguredName", "Active", "ActiveIdentifier", "RemoteKey", "SleepDiscoveryMode"],
        )
        self.tv.configure_char("Name", value=name)
        self.tv.configure_char("ConfiguredName", value=name)
        self.tv.configure_char("SleepDiscoveryMode", value=SLEEP_DISCOVERY_ALWAYS_DISCOVERABLE)
        self.char_active = self.tv.configure_char(
            "Active",
            value=0,
            setter_callback=self._on_set_active,
            getter_callback=self._on_get_active,
        )
        self.char_active_identifier = self.tv.configure_char(
            "ActiveIdentifier",
            value=0,
            setter_callback=self._on_set_active_identifier,
            getter_callback=self._on_get_active_identifier,
        )
        self.char_remote_key = self.tv.configure_char(
            "RemoteKey", setter_callback=self._on_remote_key
        )

    def add_input_source(self, app: App) -> Any:
        identifier = app.numeric_id()
        chars = ["Name", "Identifier"] if identifier is not None else ["Name"]
        source = self.add_preload_service("InputSource", chars)
        source.configure_char("Name", value=app.name)
        source.configure_char("ConfiguredName", value=app.name)
        source.configure_char("InputSourceType", value=INPUT_SOURCE_TYPE_APPLICATION)
        source.configure_char("IsConfigured", value=IS_CONFIGURED)
        source.configure_char("CurrentVisibilityState", value=VISIBILITY_SHOWN)
        if identifier is not None:
            source.configure_char("Identifier", value=identifier)
        else:
            logger.debug("App %r on %r has no numeric id %r; listing it without one", app.name, self.display_name, app.id)
        self.tv.add_linked_service(source)
        self.input_sources.append(source)
        return source

    # Pushed by the refresh loop.

    def update_active(self, value: int) -> None:
        self.char_active.set_value(value)

    def update_active_identifier(self, value: int) -> None:
        self.char_active_identifier.set_value(value)

    # HAP callbacks

    def _on_identify(self, _value: Any) -> None:
        self._submit(self.sync.identify())

    def _on_set_active(self, value: int) -> None:
        self._submit(self.sync.set_active(value))

    def _on_set_active_identifier(self, value: int) -> None:
        self._submit(self.sync.set_active_identifier(value))

    def _on_remote_key(self, value: int) -> None:
        self._submit(self.sync.set_remote_key(value))

    def _on_get_active(self) -> int:
        return self._read(self.char_active, self.sync.get_active)

    def _on_get_active_identifier(self) -> int:
        return self._read(self.char_active_identifier, self.sync.get_active_identifier)

    def _submit(self, coro: Awaitable[None]) -> None:
        try:
            future = asyncio.run_coroutine_threadsafe(coro, self.app_loop)
        except RuntimeError as exc:
            coro.close()
            logger.warning("Dropping command for %r: %s", self.display_name, exc)
            return
        future.add_done_callback(self._log_command_failure)

    def _log_command_failure(self, future: "concurrent.futures.Future[None]") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Command for %r failed", self.display_name, exc_info=exc)

    def _read(self, char: Characteristic, func: Callable[[], Awaitable[int]]) -> int:
        loop = self.app_loop
        try:
            running: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop or loop.is_closed():
            # Blocking here would deadlock the loop that has to do the work.
            return char.value

        future = asyncio.run_coroutine_threadsafe(func(), loop)
        try:
            return future.result(timeout=READ_TIMEOUT)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("Read of %s on %r timed out, answering %r", char.display_name, self.display_name, char.value)
        except Exception:
            logger.exception("Read of %s on %r failed", char.display_name, self.display_name)
        return char.value


def build_accessory(
    driver: Any,
    info: DeviceInfo,
    apps: List[App],
    sync: Any,
    loop: asyncio.AbstractEventLoop,
) -> TelevisionAccessory:
    """Create the Television accessory for one device, one input source per app."""
    accessory = TelevisionAccessory(driver, info, sync, loop)
    for app in apps:
        accessory.add_input_source(app)
    sync.attach(accessory)
    logger.debug("Built accessory %r with %d input sources", accessory.display_name, len(accessory.input_sources))
    return accessory


class HomeKitTransport:
    """Owns the HAP-python accessory server for a single device.

    The driver runs its own event loop in a background thread. HAP requests
    are served there, so characteristic reads can wait on the application
    loop, where the device calls run.
    """

    def __init__(
        self,
        *,
        pin: str,
        storage_path: Path,
        port: int,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.pin = pin
        self.port = port
        self.storage_path = Path(storage_path)
        self.loop = loop or asyncio.get_running_loop()
        self.accessory: Optional[TelevisionAccessory] = None
        self._started = False
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransportError(f"unable to set up HomeKit storage at {self.storage_path}: {exc}") from exc

        created: "concurrent.futures.Future[AccessoryDriver]" = concurrent.futures.Future()
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._serve, args=(created,), name=f"homekit-{port}", daemon=True
        )
        self._thread.start()
        try:
            self.driver = created.result()
        except (OSError, ValueError) as exc:
            self._thread.join()
            self._thread = None
            raise TransportError(f"unable to set up HomeKit server for {self.storage_path}: {exc}") from exc

    @property
    def persist_file(self) -> Path:
        return self.storage_path / PERSIST_FILE

    @property
    def hap_loop(self) -> asyncio.AbstractEventLoop:
        return self.driver.loop

    def add_accessory(self, accessory: TelevisionAccessory) -> None:
        self.accessory = accessory
        self.driver.add_accessory(accessory=accessory)

    def publish(self, info: DeviceInfo, apps: List[App], sync: Any) -> TelevisionAccessory:
        accessory = build_accessory(self.driver, info, apps, sync, self.loop)
        self.add_accessory(accessory)
        return accessory

    async def start(self) -> None:
        if self._started:
            return
        if self.accessory is None:
            raise TransportError("no accessory to publish")
        try:
            await self._on_hap_loop(self.driver.async_start())
        except OSError as exc:
            await self.stop()
            raise TransportError(f"unable to start HomeKit server on port {self.port}: {exc}") from exc
        except Exception:
            await self.stop()
            raise
        self._started = True
        logger.info("Publishing %r on port %d (setup code %s)", self.accessory.display_name, self.port, self.pin)

    async def stop(self) -> None:
        """Stop the accessory server, flushing pairing state, and end its thread."""
        if self._thread is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._halt(self._started), self.hap_loop)
        self._started = False
        await asyncio.to_thread(self._thread.join, STOP_TIMEOUT)
        if self._thread.is_alive():
            raise TransportError(f"HomeKit server on port {self.port} did not stop within {STOP_TIMEOUT}s")
        self._thread = None
        if future.done():
            future.result()

    def _serve(self, created: "concurrent.futures.Future[AccessoryDriver]") -> None:
        # Built here so the driver creates its loop and records this thread as its own.
        try:
            driver = AccessoryDriver(
                port=self.port,
                persist_file=str(self.persist_file),
                pincode=self.pin.encode("ascii"),
            )
        except Exception as exc:
            created.set_exception(exc)
            return
        created.set_result(driver)

        loop = driver.loop
        logger.debug("HomeKit driver thread for port %d starting", self.port)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            logger.debug("HomeKit driver thread for port %d stopped", self.port)

    async def _halt(self, started: bool) -> None:
        try:
            if started:
                await self.driver.async_stop()
        finally:
            asyncio.get_running_loop().stop()

    async def _on_hap_loop(self, coro: Awaitable[Any]) -> Any:
        return await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(coro, self.hap_loop))
