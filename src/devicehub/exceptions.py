"""Exception hierarchy for device enumeration, selection and setup."""

from __future__ import annotations


class DeviceHubError(Exception):
    """Base exception for all devicehub errors."""

    def __init__(self, message: str, serial_number: str | None = None) -> None:
        self.serial_number = serial_number
        super().__init__(message)


class ConfigurationError(DeviceHubError):
    """Launcher configuration is missing or malformed."""


class ProviderError(DeviceHubError):
    """The enumeration provider failed to subscribe or unsubscribe."""


class EnumerationError(DeviceHubError):
    """Enumerating attached devices, or applying a hotplug pass, failed."""


class DeviceNotFoundError(DeviceHubError):
    """No detected device has the requested serial number."""


class SetupError(DeviceHubError):
    """The release step or the configured setup procedure failed."""


class SetupInProgressError(SetupError):
    """A setup session is already running; setup is not re-entrant."""


class ContractViolationError(DeviceHubError):
    """The single-slot input handshake was used out of order."""


class CancelledByUser(DeviceHubError):
    """The user declined a confirmation or dismissed a choice."""

    def __init__(self, message: str = "Cancelled by user.") -> None:
        super().__init__(message)
