from __future__ import annotations

import asyncio
import logging
import socket
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .roku import DEFAULT_PORT, RokuController

logger = logging.getLogger(__name__)

SSDP_ADDRESS = ("239.255.255.250", 1900)
ROKU_SEARCH_TARGET = "roku:ecp"

M_SEARCH = (
    "M-SEARCH * HTTP/1.1\r\n"
    "HOST: 239.255.255.250:1900\r\n"
    'MAN: "ssdp:discover"\r\n'
    "MX: 3\r\n"
    f"ST: {ROKU_SEARCH_TARGET}\r\n"
    "\r\n"
)


def parse_ssdp_response(data: bytes) -> Dict[str, str]:
    """Parse an SSDP reply into a dict of lower-cased header names."""
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\r\n") if "\r\n" in text else text.splitlines()
    if not lines or not lines[0].upper().startswith("HTTP/"):
        return {}
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            continue
        headers[name.strip().lower()] = value.strip()
    return headers


def location_to_endpoint(location: str) -> Optional[Tuple[str, int]]:
    parsed = urlparse(location)
    if not parsed.hostname:
        return None
    return parsed.hostname, parsed.port or DEFAULT_PORT


class _SearchProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.endpoints: Dict[Tuple[str, int], str] = {}

    def datagram_received(self, data: bytes, addr) -> None:
        headers = parse_ssdp_response(data)
        if not headers:
            return
        target = headers.get("st", "")
        if target and target.lower() != ROKU_SEARCH_TARGET:
            return
        endpoint = location_to_endpoint(headers.get("location", ""))
        if endpoint is None:
            logger.debug("Ignoring SSDP reply from %s without a usable LOCATION", addr[0])
            return
        if endpoint not in self.endpoints:
            logger.debug("Found Roku at %s:%d (usn=%s)", endpoint[0], endpoint[1], headers.get("usn"))
        self.endpoints[endpoint] = headers.get("usn", "")

    def error_received(self, exc: Exception) -> None:
        logger.debug("SSDP socket error: %s", exc)


async def discover(timeout: float = 5.0, *, request_timeout: float = 10.0) -> List[RokuController]:
    """Search the local network for Roku devices.

    Sends one ``M-SEARCH`` for ``roku:ecp`` and collects replies until
    ``timeout`` elapses. Finding nothing is not an error; failing to open
    the socket is.
    """
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        _SearchProtocol,
        family=socket.AF_INET,
        local_addr=("0.0.0.0", 0),
    )
    try:
        sock = transport.get_extra_info("socket")
        if sock is not None:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
        transport.sendto(M_SEARCH.encode("ascii"), SSDP_ADDRESS)
        await asyncio.sleep(timeout)
    finally:
        transport.close()

    return [
        RokuController(host, port, timeout=request_timeout)
        for host, port in sorted(protocol.endpoints)
    ]
