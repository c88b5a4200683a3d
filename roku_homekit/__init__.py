"""Bridge Roku devices on the local network to HomeKit televisions."""

__version__ = "1.0.0"
