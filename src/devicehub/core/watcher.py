"""Hotplug watcher: sole owner of the provider's hotplug subscription.

``start`` enumerates once synchronously, then subscribes. Hotplug callbacks,
which may arrive on a provider thread, are marshalled onto the event loop and
applied through a FIFO queue drained by a single consumer task, so results
reach the registry in the order the callbacks fired.

Every ``start``/``stop`` bumps a generation counter. Work belonging to an
older generation is discarded instead of being applied to the registry.
"""

from __future__ import annotations

import asyncio

from devicehub.core.registry import DeviceRegistry
from devicehub.exceptions import EnumerationError
from devicehub.models.device import Device, DeviceTraits, normalize_devices
from devicehub.providers.base import EnumerationProvider
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)


class HotplugWatcher:
    """Keeps the device registry in sync with attached hardware."""

    def __init__(self, provider: EnumerationProvider, registry: DeviceRegistry) -> None:
        self._provider = provider
        self._registry = registry
        self._traits: DeviceTraits | None = None
        self._handle: object | None = None
        self._queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None
        self._generation = 0

    @property
    def is_watching(self) -> bool:
        return self._handle is not None

    @property
    def traits(self) -> DeviceTraits | None:
        """Traits of the most recent ``start`` call."""
        return self._traits

    async def start(self, traits: DeviceTraits) -> bool:
        """Start watching, replacing any active subscription.

        Returns:
            True if watching is active afterwards. Failures are logged and
            leave the watcher stopped.
        """
        self.stop()
        generation = self._generation
        self._traits = traits
        loop = asyncio.get_running_loop()

        try:
            devices = await self._enumerate(traits)
        except EnumerationError as exc:
            logger.error("enumeration_failed", error=str(exc), traits=str(traits))
            return False
        if generation != self._generation:
            logger.debug("watch_start_superseded")
            return False
        self._registry.record_enumeration(devices)

        queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()

        def enqueue(kind: str, serial_number: str) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                queue.put_nowait((kind, serial_number))
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, (kind, serial_number))
            except RuntimeError:
                logger.debug("hotplug_event_after_loop_closed", serial_number=serial_number)

        try:
            handle = self._provider.subscribe_hotplug(
                traits,
                lambda serial: enqueue("attach", serial),
                lambda serial: enqueue("change", serial),
            )
        except Exception as exc:
            logger.error("hotplug_subscribe_failed", error=str(exc), provider=self._provider.provider_name)
            return False

        self._handle = handle
        self._queue = queue
        self._consumer = asyncio.create_task(self._consume(queue, generation))
        logger.info("watch_started", traits=str(traits), devices=len(devices))
        return True

    def stop(self) -> None:
        """Tear down the subscription, if any. Never raises."""
        self._generation += 1
        handle, self._handle = self._handle, None
        consumer, self._consumer = self._consumer, None
        self._queue = None

        if consumer is not None and not consumer.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if consumer is not current:
                consumer.cancel()

        if handle is not None:
            try:
                self._provider.unsubscribe(handle)
            except Exception as exc:
                logger.error("stop_watching_failed", error=str(exc))
            logger.info("watch_stopped")

    async def join(self) -> None:
        """Wait until every hotplug event queued so far has been applied."""
        queue, consumer = self._queue, self._consumer
        if queue is None or consumer is None or consumer.done():
            return
        joiner = asyncio.ensure_future(queue.join())
        try:
            await asyncio.wait({joiner, consumer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            joiner.cancel()

    async def _enumerate(self, traits: DeviceTraits) -> list[Device]:
        try:
            raws = await asyncio.to_thread(self._provider.enumerate, traits)
            return normalize_devices(raws)
        except EnumerationError:
            raise
        except Exception as exc:
            raise EnumerationError(f"{self._provider.provider_name}: {exc}") from exc

    async def _consume(self, queue: asyncio.Queue, generation: int) -> None:
        while True:
            kind, serial_number = await queue.get()
            try:
                if generation != self._generation:
                    return
                logger.debug("hotplug_event", kind=kind, serial_number=serial_number)
                try:
                    devices = await self._enumerate(self._traits)
                except EnumerationError as exc:
                    logger.error("hotplug_enumeration_failed", error=str(exc))
                    self.stop()
                    return
                if generation != self._generation:
                    return
                self._registry.record_enumeration(devices)
            finally:
                queue.task_done()
