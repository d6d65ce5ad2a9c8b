"""Device records produced by enumeration, and their normalization."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from devicehub.exceptions import EnumerationError

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class Trait(StrEnum):
    """Selection criteria understood by enumeration providers."""
    SERIALPORT = "serialport"
    USB = "usb"
    JLINK = "jlink"
    NORDIC_USB = "nordic_usb"
    MCUBOOT = "mcuboot"


class DeviceTraits(BaseModel):
    """Set of traits a device must match (any of) to be enumerated."""
    model_config = {"frozen": True}

    traits: frozenset[Trait] = Field(default_factory=frozenset)

    @classmethod
    def parse(cls, text: str | None) -> DeviceTraits:
        """Build traits from a comma separated list such as ``"jlink,serialport"``."""
        if not text:
            return cls()
        names = [part.strip() for part in text.split(",") if part.strip()]
        return cls(traits=frozenset(Trait(name) for name in names))

    def matches(self, device_traits: Iterable[str]) -> bool:
        if not self.traits:
            return True
        return any(t in self.traits for t in device_traits)

    def __str__(self) -> str:
        return ",".join(sorted(t.value for t in self.traits)) or "*"


class SerialPortInfo(BaseModel):
    """One serial port exposed by a device."""
    model_config = {"frozen": True, "extra": "ignore"}

    com_name: str = Field(description="OS path or name of the port, e.g. /dev/ttyACM0")
    vendor_id: str | None = None
    product_id: str | None = None
    vcom: int | None = Field(default=None, description="Virtual COM index on the probe")


class UsbInfo(BaseModel):
    """USB descriptor fields of a device."""
    model_config = {"frozen": True, "extra": "ignore"}

    manufacturer: str | None = None
    product: str | None = None
    vendor_id: int | None = None
    product_id: int | None = None


class JlinkInfo(BaseModel):
    """Debug probe link information for J-Link based devices."""
    model_config = {"frozen": True, "extra": "ignore"}

    board_version: str | None = None
    device_family: str | None = None
    device_version: str | None = None
    serial_number: str | None = None


class Device(BaseModel):
    """One attached unit as reported by the enumeration provider.

    Devices are immutable; every enumeration pass yields fresh values.
    Equality and hashing only consider ``serial_number`` so a device that
    re-enumerates with different transports is still the same device.
    """
    model_config = {"frozen": True, "extra": "ignore"}

    serial_number: str = Field(min_length=1)
    traits: tuple[str, ...] = ()
    usb: UsbInfo | None = None
    jlink: JlinkInfo | None = None
    serial_ports: tuple[SerialPortInfo, ...] = ()
    nickname: str | None = None

    @property
    def board_version(self) -> str | None:
        return self.jlink.board_version if self.jlink else None

    @property
    def serialport(self) -> SerialPortInfo | None:
        return self.serial_ports[0] if self.serial_ports else None

    @property
    def display_name(self) -> str:
        if self.nickname:
            return self.nickname
        if self.usb and self.usb.product:
            return self.usb.product
        if self.board_version:
            return f"J-Link {self.board_version}"
        return self.serial_number

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self.serial_number == other.serial_number

    def __hash__(self) -> int:
        return hash(self.serial_number)


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub("_", key).lower()


def _snake_keys(value: Any) -> Any:
    """Recursively convert mapping keys from camelCase to snake_case."""
    if isinstance(value, Mapping):
        return {_snake_case(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_snake_keys(v) for v in value]
    return value


def normalize_device(raw: Mapping[str, Any]) -> Device:
    """Map a raw provider record to a Device.

    Raises:
        EnumerationError: If the record has no usable serial number or
            otherwise fails validation.
    """
    data = _snake_keys(raw)
    serial = data.get("serial_number")
    if serial is None or str(serial) == "":
        raise EnumerationError("Enumerated device has no serial number")
    data["serial_number"] = str(serial)
    try:
        return Device.model_validate(data)
    except ValidationError as exc:
        raise EnumerationError(
            f"Invalid device record: {exc.error_count()} error(s)",
            serial_number=data["serial_number"],
        ) from exc


def normalize_devices(raws: Iterable[Mapping[str, Any]]) -> list[Device]:
    """Normalize a provider result, dropping later duplicates of a serial number."""
    devices: list[Device] = []
    seen: set[str] = set()
    for raw in raws:
        device = normalize_device(raw)
        if device.serial_number in seen:
            continue
        seen.add(device.serial_number)
        devices.append(device)
    return devices
