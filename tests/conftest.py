"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections import deque

import pytest
import structlog

from devicehub.core.notifier import Notifier
from devicehub.exceptions import ProviderError
from devicehub.models.device import DeviceTraits
from devicehub.providers.base import EnumerationProvider


def raw_device(serial: str, traits: tuple[str, ...] = ("serialport",), **extra) -> dict:
    """Build a raw provider record the way a real provider would report it."""
    record = {"serialNumber": serial, "traits": list(traits)}
    record.update(extra)
    return record


class FakeProvider(EnumerationProvider):
    """In-memory provider with scripted results and manual hotplug triggers."""

    def __init__(self, devices: list[dict] | None = None) -> None:
        self.devices: list[dict] = list(devices or [])
        self.script: deque[list[dict]] = deque()
        self.fail_enumerate: Exception | None = None
        self.fail_subscribe: Exception | None = None
        self.fail_unsubscribe: Exception | None = None
        self.subscriptions: dict[int, tuple] = {}
        self.enumerate_calls = 0
        self.subscribe_calls = 0
        self.closed = False
        self._next_handle = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    def set_devices(self, *serials: str) -> None:
        self.devices = [raw_device(s) for s in serials]

    def enumerate(self, traits: DeviceTraits) -> list[dict]:
        self.enumerate_calls += 1
        if self.fail_enumerate is not None:
            raise self.fail_enumerate
        result = self.script.popleft() if self.script else self.devices
        return [d for d in result if traits.matches(d.get("traits", ()))]

    def subscribe_hotplug(self, traits, on_attach, on_change_or_detach) -> object:
        self.subscribe_calls += 1
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        self._next_handle += 1
        self.subscriptions[self._next_handle] = (on_attach, on_change_or_detach)
        return self._next_handle

    def unsubscribe(self, handle: object) -> None:
        if self.fail_unsubscribe is not None:
            raise self.fail_unsubscribe
        if handle not in self.subscriptions:
            raise ProviderError(f"unknown handle {handle}")
        del self.subscriptions[handle]

    def fire_attach(self, serial: str) -> None:
        for on_attach, _ in list(self.subscriptions.values()):
            on_attach(serial)

    def fire_change(self, serial: str) -> None:
        for _, on_change in list(self.subscriptions.values()):
            on_change(serial)

    def close(self) -> None:
        self.closed = True


async def wait_for(predicate, attempts: int = 200) -> None:
    """Yield to the event loop until ``predicate()`` is true."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not reached")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider([raw_device("A"), raw_device("B")])


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def events(notifier: Notifier) -> list:
    """Every event emitted through ``notifier``, in order."""
    received: list = []
    notifier.subscribe(received.append)
    return received


def kinds(events: list) -> list[str]:
    return [e.kind.value for e in events]


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo any ``setup_logging`` call so later tests never log to a stale stream."""
    yield
    structlog.reset_defaults()
