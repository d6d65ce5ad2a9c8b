"""Composition root owning the device lifecycle for one application."""

from __future__ import annotations

import asyncio

from devicehub.config import LauncherConfig
from devicehub.core.input_channel import InputChannel
from devicehub.core.notifier import Listener, Notifier
from devicehub.core.orchestrator import SetupOrchestrator
from devicehub.core.registry import DeviceRegistry
from devicehub.core.watcher import HotplugWatcher
from devicehub.exceptions import DeviceNotFoundError, SetupInProgressError
from devicehub.models.device import Device, DeviceTraits
from devicehub.models.setup import SetupStatus
from devicehub.providers.base import EnumerationProvider
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)


class DeviceLauncher:
    """Owns the registry, the watcher and the setup orchestrator.

    Use as an async context manager, or call ``init()`` and ``shutdown()``
    explicitly. All commands must be issued from the event loop thread.
    """

    def __init__(
        self,
        provider: EnumerationProvider,
        config: LauncherConfig | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.config = config or LauncherConfig()
        self.provider = provider
        self.notifier = notifier or Notifier()
        self.registry = DeviceRegistry(self.notifier)
        self.watcher = HotplugWatcher(provider, self.registry)
        self.input_channel = InputChannel(self.notifier)
        self.orchestrator = SetupOrchestrator(
            self.registry, self.watcher, self.input_channel, self.notifier, self.config
        )
        self._started = False

    async def __aenter__(self) -> DeviceLauncher:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def init(self) -> None:
        if self._started:
            return
        self._started = True
        logger.info("launcher_starting", provider=self.provider.provider_name)
        self.orchestrator.open()
        await self.start_watching()

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.orchestrator.close()
        self.watcher.stop()
        try:
            await asyncio.to_thread(self.provider.close)
        except Exception:
            logger.warning("provider_close_error", provider=self.provider.provider_name, exc_info=True)
        logger.info("launcher_stopped")

    def subscribe(self, listener: Listener):
        """Register a notification listener; returns the unsubscribe callable."""
        return self.notifier.subscribe(listener)

    async def start_watching(self, traits: DeviceTraits | None = None) -> bool:
        """Start, or restart, hotplug watching.

        Raises:
            SetupInProgressError: If a setup session has paused watching.
        """
        if self.orchestrator.is_busy:
            raise SetupInProgressError("Watching is paused while device setup runs")
        return await self.watcher.start(traits if traits is not None else self.config.selector_traits)

    def stop_watching(self) -> None:
        self.watcher.stop()

    async def select_and_setup(self, device: Device) -> Device | None:
        return await self.orchestrator.select_and_setup(device)

    def begin_setup(self, device: Device) -> asyncio.Task:
        """Start ``select_and_setup`` in the background and return its task."""
        return self.orchestrator.start_setup(device)

    def find_device(self, serial_number: str) -> Device:
        """Look up a detected device.

        Raises:
            DeviceNotFoundError: If no detected device has that serial number.
        """
        device = self.registry.find(serial_number)
        if device is None:
            raise DeviceNotFoundError(
                f"Device {serial_number} is not attached", serial_number=serial_number
            )
        return device

    def deselect(self) -> None:
        self.registry.deselect()

    def provide_setup_input(self, value: bool | str | None) -> bool:
        return self.input_channel.provide_input(value)

    def setup_status(self) -> SetupStatus:
        return self.orchestrator.status()
