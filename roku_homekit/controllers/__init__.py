"""Protocol controllers for the Roku HomeKit bridge."""

from .roku import App, DeviceInfo, RokuController, RokuError, controllers_for_hosts  # noqa: F401
from .ssdp import discover  # noqa: F401
