"""Enumeration providers: sources of attached devices and hotplug events."""

from devicehub.providers.base import EnumerationProvider, HotplugCallback, RawDevice

__all__ = ["EnumerationProvider", "HotplugCallback", "RawDevice"]
