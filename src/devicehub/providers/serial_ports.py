"""Enumeration provider backed by pyserial's port listing.

Ports are grouped into devices by USB serial number. Hotplug is detected by
a background thread that polls the port list and diffs it against the
previous poll.
"""

from __future__ import annotations

import threading
from collections import defaultdict

from serial.tools.list_ports import comports

from devicehub.exceptions import EnumerationError, ProviderError
from devicehub.models.device import DeviceTraits, Trait
from devicehub.providers.base import EnumerationProvider, HotplugCallback, RawDevice
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)

SEGGER_VENDOR_ID = 0x1366
NORDIC_VENDOR_ID = 0x1915


def _device_traits(vid: int | None, product: str | None) -> list[str]:
    traits = [Trait.SERIALPORT.value]
    if vid is not None:
        traits.append(Trait.USB.value)
    if vid == SEGGER_VENDOR_ID:
        traits.append(Trait.JLINK.value)
    if vid == NORDIC_VENDOR_ID:
        traits.append(Trait.NORDIC_USB.value)
    if product and "mcuboot" in product.lower():
        traits.append(Trait.MCUBOOT.value)
    return traits


def list_raw_devices() -> list[RawDevice]:
    """Group the host's serial ports into one raw record per serial number."""
    grouped: dict[str, list] = defaultdict(list)
    for port in comports():
        if not port.serial_number:
            continue
        grouped[port.serial_number].append(port)

    records: list[RawDevice] = []
    for serial_number, ports in grouped.items():
        ports.sort(key=lambda p: p.device)
        first = ports[0]
        record: dict = {
            "serialNumber": serial_number,
            "traits": _device_traits(first.vid, first.product),
            "usb": {
                "manufacturer": first.manufacturer,
                "product": first.product,
                "vendorId": first.vid,
                "productId": first.pid,
            },
            "serialPorts": [
                {
                    "comName": p.device,
                    "vendorId": f"{p.vid:04X}" if p.vid is not None else None,
                    "productId": f"{p.pid:04X}" if p.pid is not None else None,
                    "vcom": index,
                }
                for index, p in enumerate(ports)
            ],
        }
        if first.vid == SEGGER_VENDOR_ID:
            record["jlink"] = {"serialNumber": serial_number}
        records.append(record)
    return records


class _PollSubscription:
    """Background poller that turns port-list diffs into hotplug callbacks."""

    def __init__(
        self,
        provider: SerialPortProvider,
        traits: DeviceTraits,
        on_attach: HotplugCallback,
        on_change_or_detach: HotplugCallback,
    ) -> None:
        self._provider = provider
        self._traits = traits
        self._on_attach = on_attach
        self._on_change = on_change_or_detach
        self._stop = threading.Event()
        self._known = self._fingerprint()
        self._thread = threading.Thread(target=self._run, name="devicehub-hotplug", daemon=True)

    def _fingerprint(self) -> dict[str, tuple[str, ...]]:
        return {
            str(raw["serialNumber"]): tuple(p["comName"] for p in raw["serialPorts"])
            for raw in self._provider.enumerate(self._traits)
        }

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Signal the poller to exit. Returns without waiting for the thread."""
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.wait(self._provider.poll_interval_s):
            try:
                current = self._fingerprint()
            except Exception:
                logger.warning("hotplug_poll_failed", exc_info=True)
                continue
            if self._stop.is_set():
                return
            previous, self._known = self._known, current
            try:
                for serial_number in current.keys() - previous.keys():
                    self._on_attach(serial_number)
                for serial_number, ports in previous.items():
                    if current.get(serial_number) != ports:
                        self._on_change(serial_number)
            except Exception:
                logger.exception("hotplug_callback_failed")


class SerialPortProvider(EnumerationProvider):
    """Enumerates USB serial devices via pyserial."""

    def __init__(self, poll_interval_s: float = 1.0) -> None:
        self.poll_interval_s = poll_interval_s
        self._lock = threading.Lock()
        self._subscriptions: set[_PollSubscription] = set()

    @property
    def provider_name(self) -> str:
        return "serial_ports"

    def enumerate(self, traits: DeviceTraits) -> list[RawDevice]:
        try:
            raws = list_raw_devices()
        except OSError as exc:
            raise EnumerationError(f"Listing serial ports failed: {exc}") from exc
        return [raw for raw in raws if traits.matches(raw["traits"])]

    def subscribe_hotplug(
        self,
        traits: DeviceTraits,
        on_attach: HotplugCallback,
        on_change_or_detach: HotplugCallback,
    ) -> object:
        subscription = _PollSubscription(self, traits, on_attach, on_change_or_detach)
        with self._lock:
            self._subscriptions.add(subscription)
        subscription.start()
        logger.debug("hotplug_subscribed", provider=self.provider_name, traits=str(traits))
        return subscription

    def unsubscribe(self, handle: object) -> None:
        with self._lock:
            if handle not in self._subscriptions:
                raise ProviderError("Unknown hotplug subscription handle")
            self._subscriptions.discard(handle)
        handle.stop()
        logger.debug("hotplug_unsubscribed", provider=self.provider_name)

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.stop()
        for subscription in subscriptions:
            subscription.join(timeout=self.poll_interval_s * 2)
