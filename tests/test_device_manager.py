#!/usr/bin/env python3
"""Tests for fleet setup, start and shutdown."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from roku_homekit.config import Settings
from roku_homekit.controllers.roku import App, RokuError
from roku_homekit.device_manager import DeviceManager
from roku_homekit.errors import TransportError
from tests.helpers import FakeClient, make_info


class FakeTransport:
    def __init__(self, info, port):
        self.info = info
        self.port = port
        self.apps = None
        self.sync = None
        self.start = AsyncMock()
        self.stop = AsyncMock()

    def publish(self, info, apps, sync):
        self.apps = apps
        self.sync = sync
        return self


class TransportFactory:
    def __init__(self):
        self.created = []

    def __call__(self, info, port):
        transport = FakeTransport(info, port)
        self.created.append(transport)
        return transport


def make_fleet(count=3):
    return [
        FakeClient(
            info=make_info(name=f"Roku {index}", serial=f"SERIAL{index}"),
            apps=[App(id="12", name="Netflix")],
            host=f"192.168.1.{20 + index}",
        )
        for index in range(count)
    ]


def make_manager(clients, factory=None, **overrides):
    settings = Settings(refresh_interval=0.01, port=51826, **overrides)
    return DeviceManager(
        settings,
        discover=AsyncMock(return_value=clients),
        transport_factory=factory or TransportFactory(),
    )


@pytest.mark.asyncio
async def test_one_failing_device_does_not_abort_the_fleet():
    clients = make_fleet(3)
    clients[1].device_info.side_effect = RokuError("192.168.1.21", "device-info", "timed out")
    factory = TransportFactory()
    manager = make_manager(clients, factory)

    devices = await manager.startup()
    await manager.start()

    assert [device.info.serial_number for device in devices] == ["SERIAL0", "SERIAL2"]
    assert [transport.port for transport in factory.created] == [51826, 51827]
    for transport in factory.created:
        transport.start.assert_awaited_once()
    clients[1].close.assert_awaited_once()

    await manager.shutdown()


@pytest.mark.asyncio
async def test_app_listing_failure_yields_zero_input_sources():
    clients = make_fleet(1)
    clients[0].apps.side_effect = RokuError("192.168.1.20", "apps", "refused")
    factory = TransportFactory()
    manager = make_manager(clients, factory)

    devices = await manager.startup()

    assert len(devices) == 1
    assert devices[0].apps == []
    assert factory.created[0].apps == []


@pytest.mark.asyncio
async def test_empty_fleet_is_not_an_error():
    manager = make_manager([])

    assert await manager.startup() == []
    await manager.start()
    await manager.shutdown()


@pytest.mark.asyncio
async def test_transport_creation_failure_skips_device():
    clients = make_fleet(2)
    created = TransportFactory()

    def factory(info, port):
        if info.serial_number == "SERIAL0":
            raise TransportError("storage path not writable")
        return created(info, port)

    manager = make_manager(clients, factory)

    devices = await manager.startup()

    assert [device.info.serial_number for device in devices] == ["SERIAL1"]
    clients[0].close.assert_awaited_once()


@pytest.mark.asyncio
async def test_transport_start_failure_drops_device():
    clients = make_fleet(2)
    factory = TransportFactory()
    manager = make_manager(clients, factory)
    await manager.startup()
    factory.created[0].start.side_effect = TransportError("address in use")

    await manager.start()

    assert [device.info.serial_number for device in manager.devices] == ["SERIAL1"]
    assert manager.devices[0].task is not None
    clients[0].close.assert_awaited_once()

    await manager.shutdown()


@pytest.mark.asyncio
async def test_unexpected_start_failure_drops_only_that_device():
    clients = make_fleet(3)
    factory = TransportFactory()
    manager = make_manager(clients, factory)
    await manager.startup()
    factory.created[0].start.side_effect = RuntimeError("mdns registration failed")

    await manager.start()

    assert [device.info.serial_number for device in manager.devices] == ["SERIAL1", "SERIAL2"]
    assert all(device.task is not None for device in manager.devices)
    clients[0].close.assert_awaited_once()
    clients[1].close.assert_not_awaited()

    await manager.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_loops_then_every_transport():
    clients = make_fleet(3)
    factory = TransportFactory()
    manager = make_manager(clients, factory)
    await manager.startup()
    await manager.start()
    await asyncio.sleep(0.05)
    factory.created[0].stop.side_effect = RuntimeError("flush failed")

    await manager.shutdown()

    for device in manager.devices:
        assert device.task.done()
    for transport in factory.created:
        transport.stop.assert_awaited_once()
    for client in clients:
        client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_refresh_loops_run_per_device():
    clients = make_fleet(2)
    manager = make_manager(clients)
    await manager.startup()
    await manager.start()

    for _ in range(100):
        if all(client.active_app.await_count for client in clients):
            break
        await asyncio.sleep(0.01)
    await manager.shutdown()

    for client in clients:
        assert client.active_app.await_count >= 1


@pytest.mark.asyncio
async def test_static_hosts_bypass_discovery():
    manager = DeviceManager(Settings(hosts=["10.0.0.5", "10.0.0.6:8061"]))

    controllers = await manager._discover_devices()

    assert [(c.host, c.port) for c in controllers] == [("10.0.0.5", 8060), ("10.0.0.6", 8061)]
    for controller in controllers:
        await controller.close()
