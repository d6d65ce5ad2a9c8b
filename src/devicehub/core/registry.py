"""Canonical in-memory view of detected devices and the current selection."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel

from devicehub.core.notifier import Notifier
from devicehub.models.device import Device
from devicehub.models.events import DeviceDeselected, DeviceSelected, DevicesDetected
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)


class RegistryState(BaseModel):
    """Snapshot of the registry for read-only consumers."""
    detected_devices: tuple[Device, ...] = ()
    selected_serial_number: str | None = None


class DeviceRegistry:
    """Owns the detected-device list and the selected serial number.

    State changes are published through the notifier only.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._devices: tuple[Device, ...] = ()
        self._selected: str | None = None

    @property
    def detected_devices(self) -> tuple[Device, ...]:
        return self._devices

    @property
    def selected_serial_number(self) -> str | None:
        return self._selected

    @property
    def selected_device(self) -> Device | None:
        """The selected device if it is currently detected."""
        if self._selected is None:
            return None
        return self.find(self._selected)

    def find(self, serial_number: str) -> Device | None:
        for device in self._devices:
            if device.serial_number == serial_number:
                return device
        return None

    def snapshot(self) -> RegistryState:
        return RegistryState(detected_devices=self._devices, selected_serial_number=self._selected)

    def record_enumeration(self, devices: Iterable[Device]) -> None:
        """Replace the detected list with a fresh enumeration result.

        If the selected device is missing from ``devices`` the selection is
        cleared and the deselection is emitted before the new list.
        """
        unique: dict[str, Device] = {}
        for device in devices:
            unique.setdefault(device.serial_number, device)
        self._devices = tuple(unique.values())

        if self._selected is not None and self._selected not in unique:
            logger.info("selected_device_detached", serial_number=self._selected)
            self._selected = None
            self._notifier.emit(DeviceDeselected())

        logger.debug("devices_detected", count=len(self._devices))
        self._notifier.emit(DevicesDetected(devices=self._devices))

    def select(self, device: Device) -> None:
        """Select ``device``; it does not have to be detected yet."""
        self._selected = device.serial_number
        logger.info("device_selected", serial_number=device.serial_number)
        self._notifier.emit(DeviceSelected(device=device))

    def deselect(self) -> None:
        self._selected = None
        logger.info("device_deselected")
        self._notifier.emit(DeviceDeselected())
