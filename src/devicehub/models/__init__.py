"""Pydantic records shared across devicehub."""

from devicehub.models.device import (
    Device,
    DeviceTraits,
    JlinkInfo,
    SerialPortInfo,
    Trait,
    UsbInfo,
    normalize_device,
    normalize_devices,
)
from devicehub.models.events import (
    DeviceDeselected,
    DeviceSelected,
    DevicesDetected,
    Event,
    EventKind,
    SetupComplete,
    SetupFailed,
    SetupInputReceived,
    SetupInputRequired,
    WatcherFailed,
)
from devicehub.models.setup import (
    DeviceSetupConfig,
    PendingPrompt,
    SetupSession,
    SetupState,
    SetupStatus,
)

__all__ = [
    "Device",
    "DeviceDeselected",
    "DeviceSelected",
    "DeviceSetupConfig",
    "DeviceTraits",
    "DevicesDetected",
    "Event",
    "EventKind",
    "JlinkInfo",
    "PendingPrompt",
    "SerialPortInfo",
    "SetupComplete",
    "SetupFailed",
    "SetupInputReceived",
    "SetupInputRequired",
    "SetupSession",
    "SetupState",
    "SetupStatus",
    "Trait",
    "UsbInfo",
    "WatcherFailed",
    "normalize_device",
    "normalize_devices",
]
