"""Keeps a HomeKit Television accessory in step with one Roku.

Reads go straight to the device and fall back to a safe value when the
device does not answer. Writes are sent once and only logged on failure.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from types import MappingProxyType
from typing import List, Mapping, Optional, Protocol

from .controllers.roku import (
    BACK_KEY,
    DOWN_KEY,
    FWD_KEY,
    HOME_KEY,
    INFO_KEY,
    LEFT_KEY,
    PLAY_KEY,
    POWER_OFF_KEY,
    POWER_ON_KEY,
    REV_KEY,
    RIGHT_KEY,
    SELECT_KEY,
    UP_KEY,
    App,
    DeviceInfo,
    RokuError,
)

logger = logging.getLogger(__name__)

# HomeKit Active characteristic values
INACTIVE = 0
ACTIVE = 1

POWER_ON_MODE = "PowerOn"
DEFAULT_REFRESH_INTERVAL = 10.0


class RemoteKey(enum.IntEnum):
    """Values written to the HomeKit RemoteKey characteristic."""

    REWIND = 0
    FAST_FORWARD = 1
    NEXT_TRACK = 2
    PREVIOUS_TRACK = 3
    ARROW_UP = 4
    ARROW_DOWN = 5
    ARROW_LEFT = 6
    ARROW_RIGHT = 7
    SELECT = 8
    BACK = 9
    EXIT = 10
    PLAY_PAUSE = 11
    INFORMATION = 15


REMOTE_KEYMAP: Mapping[int, str] = MappingProxyType({
    RemoteKey.REWIND: REV_KEY,
    RemoteKey.FAST_FORWARD: FWD_KEY,
    RemoteKey.NEXT_TRACK: FWD_KEY,
    RemoteKey.PREVIOUS_TRACK: REV_KEY,
    RemoteKey.ARROW_UP: UP_KEY,
    RemoteKey.ARROW_DOWN: DOWN_KEY,
    RemoteKey.ARROW_LEFT: LEFT_KEY,
    RemoteKey.ARROW_RIGHT: RIGHT_KEY,
    RemoteKey.SELECT: SELECT_KEY,
    RemoteKey.BACK: BACK_KEY,
    RemoteKey.EXIT: HOME_KEY,
    RemoteKey.PLAY_PAUSE: PLAY_KEY,
    RemoteKey.INFORMATION: INFO_KEY,
})


class DeviceClient(Protocol):
    async def device_info(self) -> DeviceInfo: ...

    async def apps(self) -> List[App]: ...

    async def active_app(self) -> App: ...

    async def keypress(self, key: str) -> None: ...

    async def launch(self, app_id: str) -> None: ...

    async def find_remote(self) -> None: ...


class StateSink(Protocol):
    def update_active(self, value: int) -> None: ...

    def update_active_identifier(self, value: int) -> None: ...


class TelevisionSync:
    """Translates HomeKit Television reads/writes into Roku calls."""

    def __init__(
        self,
        client: DeviceClient,
        info: DeviceInfo,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.client = client
        self.info = info
        self.refresh_interval = refresh_interval
        self.accessory: Optional[StateSink] = None

    @property
    def name(self) -> str:
        return self.info.display_name()

    def attach(self, accessory: StateSink) -> None:
        self.accessory = accessory

    async def get_active(self) -> int:
        try:
            info = await self.client.device_info()
        except RokuError as exc:
            logger.warning("Unable to get device info for %r, using last known state: %s", self.name, exc)
            info = self.info
        else:
            self.info = info

        if info.power_mode == POWER_ON_MODE:
            return ACTIVE
        return INACTIVE

    async def set_active(self, value: int) -> None:
        key = POWER_OFF_KEY if value == INACTIVE else POWER_ON_KEY
        await self._keypress(key)

    async def get_active_identifier(self) -> int:
        try:
            app = await self.client.active_app()
        except RokuError as exc:
            logger.warning("Couldn't get active app for %r: %s", self.name, exc)
            return 0

        if not app.id:
            return 0

        identifier = app.numeric_id()
        if identifier is None:
            logger.warning("Couldn't convert app id %r on %r to an int", app.id, self.name)
            return 0
        return identifier

    async def set_active_identifier(self, identifier: int) -> None:
        try:
            await self.client.launch(str(identifier))
        except RokuError as exc:
            logger.warning("Couldn't launch app id %s on %r: %s", identifier, self.name, exc)

    async def set_remote_key(self, code: int) -> None:
        key = REMOTE_KEYMAP.get(code)
        if key is None:
            logger.debug("Ignoring unmapped remote key %r on %r", code, self.name)
            return
        await self._keypress(key)

    async def identify(self) -> None:
        try:
            await self.client.find_remote()
        except RokuError as exc:
            logger.warning("Unable to find remote for %r: %s", self.name, exc)

    async def refresh(self) -> None:
        active = await self.get_active()
        identifier = await self.get_active_identifier()
        if self.accessory is not None:
            self.accessory.update_active(active)
            self.accessory.update_active_identifier(identifier)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Refresh now, then every ``refresh_interval`` seconds until ``stop_event`` is set."""
        logger.debug("Refresh loop for %r started (every %ss)", self.name, self.refresh_interval)
        while not stop_event.is_set():
            try:
                await self.refresh()
            except Exception:
                logger.exception("Refresh failed for %r", self.name)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                pass
        logger.debug("Refresh loop for %r stopped", self.name)

    async def _keypress(self, key: str) -> None:
        try:
            await self.client.keypress(key)
        except RokuError as exc:
            logger.warning("Keypress %r on %r failed: %s", key, self.name, exc)
