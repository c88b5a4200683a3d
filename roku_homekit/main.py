from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from .config import ConfigError, Settings, load_settings
from .device_manager import DeviceManager

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # HAP-python is chatty; only surface its internals in debug mode.
    logging.getLogger("pyhap").setLevel(logging.DEBUG if debug else logging.WARNING)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run(settings: Settings, manager: Optional[DeviceManager] = None) -> int:
    manager = manager or DeviceManager(settings)
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    try:
        await manager.startup()
    except OSError as exc:
        logger.error("Discovery failed: %s", exc)
        return 1

    await manager.start()
    await stop_event.wait()

    logger.info("Shutting down %d device(s)", len(manager.devices))
    await manager.shutdown()
    logger.info("Exiting")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except ConfigError as exc:
        print(f"roku-homekit: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.debug)
    return asyncio.run(run(settings))


if __name__ == "__main__":
    raise SystemExit(main())
