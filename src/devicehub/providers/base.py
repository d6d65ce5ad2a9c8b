"""Abstract interface for device enumeration providers."""

from __future__ import annotations

import abc
from collections.abc import Callable, Mapping
from typing import Any

from devicehub.models.device import DeviceTraits

RawDevice = Mapping[str, Any]
HotplugCallback = Callable[[str], None]


class EnumerationProvider(abc.ABC):
    """Low-level enumeration primitive the hotplug watcher is built on.

    Methods are blocking; the watcher runs ``enumerate`` in a worker thread.
    Hotplug callbacks may fire on any thread and receive the serial number
    of the device that changed.
    """

    @abc.abstractmethod
    def enumerate(self, traits: DeviceTraits) -> list[RawDevice]:
        """Return raw records for every attached device matching ``traits``."""

    @abc.abstractmethod
    def subscribe_hotplug(
        self,
        traits: DeviceTraits,
        on_attach: HotplugCallback,
        on_change_or_detach: HotplugCallback,
    ) -> object:
        """Start delivering hotplug callbacks and return a subscription handle."""

    @abc.abstractmethod
    def unsubscribe(self, handle: object) -> None:
        """Stop the subscription identified by ``handle``."""

    def close(self) -> None:
        """Release provider resources. Default is a no-op."""

    @property
    @abc.abstractmethod
    def provider_name(self) -> str:
        """Human-readable name of this provider."""
