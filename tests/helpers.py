#!/usr/bin/env python3
"""Canned ECP payloads and fakes shared by the tests"""

from unittest.mock import AsyncMock

from roku_homekit.controllers.roku import App, DeviceInfo

DEVICE_INFO_XML = b"""<?xml version="1.0" encoding="UTF-8" ?>
<device-info>
  <udn>29380000-0800-1025-80a4-d83154332d7e</udn>
  <serial-number>X00400ABCDEF</serial-number>
  <device-id>S00400ABCDEF</device-id>
  <vendor-name>Roku</vendor-name>
  <model-number>3810X</model-number>
  <model-name>Roku Streaming Stick+</model-name>
  <friendly-model-name>Roku Streaming Stick+</friendly-model-name>
  <default-device-name>Roku Streaming Stick+ - X00400ABCDEF</default-device-name>
  <user-device-name>Living "Room" Roku</user-device-name>
  <software-version>11.5.0</software-version>
  <software-build>4312</software-build>
  <power-mode>PowerOn</power-mode>
</device-info>
"""

APPS_XML = b"""<?xml version="1.0" encoding="UTF-8" ?>
<apps>
  <app id="12" type="appl" version="5.1.98">Netflix</app>
  <app id="837" type="appl" version="2.21.91005">YouTube</app>
  <app id="tvinput.hdmi1" type="tvin" version="1.0.0">HDMI 1</app>
</apps>
"""

ACTIVE_APP_XML = b"""<?xml version="1.0" encoding="UTF-8" ?>
<active-app>
  <app id="12" type="appl" version="5.1.98">Netflix</app>
</active-app>
"""

HOME_SCREEN_XML = b"""<?xml version="1.0" encoding="UTF-8" ?>
<active-app>
  <app>Roku</app>
</active-app>
"""


def make_info(power_mode="PowerOn", name="Living Room", serial="X00400ABCDEF"):
    return DeviceInfo(
        vendor_name="Roku",
        friendly_model_name="Roku Ultra",
        model_number="4800X",
        software_version="11.5.0",
        software_build="4312",
        serial_number=serial,
        user_device_name=name,
        power_mode=power_mode,
    )


class FakeClient:
    """Stand-in for RokuController with every operation mocked."""

    def __init__(self, info=None, apps=None, active=None, host="192.168.1.20"):
        self.host = host
        self.device_info = AsyncMock(return_value=info or make_info())
        self.apps = AsyncMock(return_value=apps if apps is not None else [])
        self.active_app = AsyncMock(return_value=active or App(id="", name="Roku"))
        self.keypress = AsyncMock()
        self.launch = AsyncMock()
        self.find_remote = AsyncMock()
        self.close = AsyncMock()

    def __repr__(self):
        return f"FakeClient({self.host})"
