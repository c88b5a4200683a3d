from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

ENV_PREFIX = "ROKU_"
DEFAULT_STORAGE_PATH = Path.home() / ".homecontrol" / "roku"
DEFAULT_HOMEKIT_PIN = "00102003"
DEFAULT_HAP_PORT = 51826


class ConfigError(ValueError):
    """Top-level configuration is invalid; the process cannot start."""


class Settings(BaseModel):
    storage_path: Path = Field(default=DEFAULT_STORAGE_PATH)
    homekit_pin: str = DEFAULT_HOMEKIT_PIN
    debug: bool = False
    port: int = Field(default=DEFAULT_HAP_PORT, ge=1, le=65535)
    discovery_timeout: float = Field(default=5.0, gt=0)
    refresh_interval: float = Field(default=10.0, gt=0)
    hosts: List[str] = Field(default_factory=list)

    @field_validator("homekit_pin")
    @classmethod
    def _check_pin(cls, value: str) -> str:
        digits = value.strip().replace("-", "")
        if len(digits) != 8 or not digits.isdigit():
            raise ValueError("HomeKit PIN must be 8 digits, e.g. 00102003 or 001-02-003")
        return digits

    @field_validator("hosts", mode="before")
    @classmethod
    def _split_hosts(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def hap_pincode(self) -> str:
        """The PIN in the ``XXX-XX-XXX`` form HAP expects."""
        pin = self.homekit_pin
        return f"{pin[:3]}-{pin[3:5]}-{pin[5:]}"

    def device_storage(self, serial_number: str) -> Path:
        return self.storage_path.expanduser() / serial_number


def build_parser() -> argparse.ArgumentParser:
    # Defaults are suppressed so only flags given on the command line
    # override the environment and the config file.
    parser = argparse.ArgumentParser(
        prog="roku-homekit",
        description="Expose Roku devices on the local network as HomeKit televisions.",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument(
        "--storage-path",
        help=f"Storage path for information about the HomeKit accessory (default: {DEFAULT_STORAGE_PATH})",
    )
    parser.add_argument("--homekit-pin", help=f"HomeKit pairing PIN (default: {DEFAULT_HOMEKIT_PIN})")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--config", help="Config file")
    parser.add_argument("--port", help=f"First HomeKit server port; each device uses the next one (default: {DEFAULT_HAP_PORT})")
    parser.add_argument("--discovery-timeout", help="Seconds to wait for SSDP replies (default: 5)")
    parser.add_argument("--refresh-interval", help="Seconds between state refreshes (default: 10)")
    parser.add_argument(
        "--host",
        dest="hosts",
        action="append",
        help="Roku address (host or host:port); repeat for several. Skips SSDP discovery.",
    )
    return parser


def read_config_file(path: Path) -> Dict[str, object]:
    """Parse a plain config file: one ``name value`` pair per line.

    Names are flag names without the leading dashes. ``#`` starts a comment
    line; a name on its own sets a boolean flag.
    """
    values: Dict[str, object] = {}
    hosts: List[str] = []
    try:
        text = Path(path).expanduser().read_text()
    except OSError as exc:
        raise ConfigError(f"unable to read config file {path}: {exc}") from exc

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        name, _, value = line.partition(" ")
        key = name.strip().replace("-", "_")
        value = value.strip()
        if key == "host":
            hosts.append(value)
            continue
        if key not in Settings.model_fields:
            raise ConfigError(f"{path}:{lineno}: unknown option {name!r}")
        values[key] = value if value else "true"

    if hosts:
        values["hosts"] = hosts
    return values


def read_environment(environ: Mapping[str, str]) -> Dict[str, object]:
    values: Dict[str, object] = {}
    for key in Settings.model_fields:
        env_name = ENV_PREFIX + key.upper()
        if env_name in environ:
            values[key] = environ[env_name]
    return values


def load_settings(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Resolve settings from flags, ``ROKU_*`` variables and a config file, in that order."""
    environ = os.environ if environ is None else environ
    args = vars(build_parser().parse_args(argv))

    config_path = args.pop("config", None) or environ.get(ENV_PREFIX + "CONFIG")
    values: Dict[str, object] = {}
    if config_path:
        values.update(read_config_file(Path(config_path)))
    values.update(read_environment(environ))
    values.update(args)

    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from exc
