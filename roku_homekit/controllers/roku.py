from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8060

# ECP key names
POWER_ON_KEY = "PowerOn"
POWER_OFF_KEY = "PowerOff"
HOME_KEY = "Home"
REV_KEY = "Rev"
FWD_KEY = "Fwd"
PLAY_KEY = "Play"
SELECT_KEY = "Select"
LEFT_KEY = "Left"
RIGHT_KEY = "Right"
DOWN_KEY = "Down"
UP_KEY = "Up"
BACK_KEY = "Back"
INFO_KEY = "Info"
FIND_REMOTE_KEY = "FindRemote"


class RokuError(Exception):
    """A call to a Roku device failed (unreachable, bad status or bad payload)."""

    def __init__(self, host: str, operation: str, message: str) -> None:
        super().__init__(f"{operation} on {host}: {message}")
        self.host = host
        self.operation = operation


@dataclass
class DeviceInfo:
    vendor_name: str
    friendly_model_name: str
    model_number: str
    software_version: str
    software_build: str
    serial_number: str
    user_device_name: str
    power_mode: str = ""

    @classmethod
    def from_xml(cls, element: ET.Element) -> "DeviceInfo":
        def text(tag: str) -> str:
            return (element.findtext(tag) or "").strip()

        model_name = text("friendly-model-name") or text("model-name")
        # user-device-name is empty until the owner renames the device
        name = (
            text("user-device-name")
            or text("friendly-device-name")
            or text("default-device-name")
            or model_name
        )
        return cls(
            vendor_name=text("vendor-name"),
            friendly_model_name=model_name,
            model_number=text("model-number"),
            software_version=text("software-version"),
            software_build=text("software-build"),
            serial_number=text("serial-number"),
            user_device_name=name,
            power_mode=text("power-mode"),
        )

    def display_name(self) -> str:
        # HomeKit pairing breaks on accessory names with quotation marks.
        return self.user_device_name.replace('"', "")

    @property
    def model(self) -> str:
        return f"{self.friendly_model_name} ({self.model_number})"

    @property
    def firmware(self) -> str:
        return f"{self.software_version}-{self.software_build}"


@dataclass
class App:
    id: str
    name: str
    type: str = ""
    version: str = ""

    @classmethod
    def from_xml(cls, element: ET.Element) -> "App":
        return cls(
            id=(element.get("id") or "").strip(),
            name=(element.text or "").strip(),
            type=element.get("type") or "",
            version=element.get("version") or "",
        )

    def numeric_id(self) -> Optional[int]:
        """Return the id as a HomeKit input identifier, or None if it is not one."""
        if not (self.id.isascii() and self.id.isdigit()):
            return None
        try:
            return int(self.id)
        except ValueError:
            return None


class RokuController:
    """Client for the Roku External Control Protocol (ECP).

    ECP is plain HTTP on port 8060: queries return XML documents and
    commands are bodiless POSTs. Every failure surfaces as ``RokuError``;
    nothing is retried here, callers decide how to degrade.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def __repr__(self) -> str:
        return f"RokuController({self.host}:{self.port})"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def device_info(self) -> DeviceInfo:
        root = await self._query("/query/device-info", "device-info")
        return DeviceInfo.from_xml(root)

    async def apps(self) -> List[App]:
        root = await self._query("/query/apps", "apps")
        return [App.from_xml(entry) for entry in root.iter("app")]

    async def active_app(self) -> App:
        root = await self._query("/query/active-app", "active-app")
        entry = root.find("app")
        if entry is None:
            return App(id="", name="")
        return App.from_xml(entry)

    async def keypress(self, key: str) -> None:
        await self._post(f"/keypress/{key}", f"keypress {key}")

    async def launch(self, app_id: str) -> None:
        await self._post(f"/launch/{app_id}", f"launch {app_id}")

    async def find_remote(self) -> None:
        await self._post(f"/keypress/{FIND_REMOTE_KEY}", "find remote")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _query(self, path: str, operation: str) -> ET.Element:
        session = self._get_session()
        try:
            async with session.get(self.base_url + path) as resp:
                if resp.status >= 400:
                    raise RokuError(self.host, operation, f"HTTP {resp.status}")
                body = await resp.read()
        except RokuError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RokuError(self.host, operation, str(exc) or type(exc).__name__) from exc
        try:
            return ET.fromstring(body)
        except ET.ParseError as exc:
            raise RokuError(self.host, operation, f"malformed response: {exc}") from exc

    async def _post(self, path: str, operation: str) -> None:
        session = self._get_session()
        logger.debug("POST %s%s", self.base_url, path)
        try:
            async with session.post(self.base_url + path) as resp:
                if resp.status >= 400:
                    raise RokuError(self.host, operation, f"HTTP {resp.status}")
        except RokuError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RokuError(self.host, operation, str(exc) or type(exc).__name__) from exc


def parse_host(value: str) -> Dict[str, object]:
    """Split ``host`` or ``host:port`` into controller keyword arguments."""
    value = value.strip()
    if not value:
        raise ValueError("empty host")
    host, sep, port = value.rpartition(":")
    if sep and port.isdigit() and host:
        return {"host": host, "port": int(port)}
    return {"host": value, "port": DEFAULT_PORT}


def controllers_for_hosts(hosts: List[str], *, timeout: float = 10.0) -> List[RokuController]:
    controllers: List[RokuController] = []
    for value in hosts:
        target = parse_host(value)
        controllers.append(RokuController(str(target["host"]), int(target["port"]), timeout=timeout))
    return controllers
