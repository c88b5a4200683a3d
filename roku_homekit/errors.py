class DeviceSetupError(RuntimeError):
    """A discovered device could not be turned into an accessory."""


class TransportError(RuntimeError):
    """The HomeKit accessory server for a device could not be created or started."""
