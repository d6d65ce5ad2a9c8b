"""Notification records emitted to the user-facing layer."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal, Union

from pydantic import BaseModel, Field

from devicehub.models.device import Device


class EventKind(StrEnum):
    """Kinds of notification, in the vocabulary apps subscribe to."""
    DEVICES_DETECTED = "devices_detected"
    DEVICE_SELECTED = "device_selected"
    DEVICE_DESELECTED = "device_deselected"
    DEVICE_SETUP_INPUT_REQUIRED = "device_setup_input_required"
    DEVICE_SETUP_INPUT_RECEIVED = "device_setup_input_received"
    DEVICE_SETUP_COMPLETE = "device_setup_complete"
    DEVICE_SETUP_ERROR = "device_setup_error"
    WATCHER_FAILED = "watcher_failed"


class DevicesDetected(BaseModel):
    """Complete list of attached devices after an enumeration pass."""
    kind: Literal[EventKind.DEVICES_DETECTED] = EventKind.DEVICES_DETECTED
    devices: tuple[Device, ...] = ()


class DeviceSelected(BaseModel):
    kind: Literal[EventKind.DEVICE_SELECTED] = EventKind.DEVICE_SELECTED
    device: Device


class DeviceDeselected(BaseModel):
    kind: Literal[EventKind.DEVICE_DESELECTED] = EventKind.DEVICE_DESELECTED


class SetupInputRequired(BaseModel):
    """Setup needs a confirmation (no choices) or one of ``choices``."""
    kind: Literal[EventKind.DEVICE_SETUP_INPUT_REQUIRED] = EventKind.DEVICE_SETUP_INPUT_REQUIRED
    message: str
    choices: tuple[str, ...] | None = None


class SetupInputReceived(BaseModel):
    kind: Literal[EventKind.DEVICE_SETUP_INPUT_RECEIVED] = EventKind.DEVICE_SETUP_INPUT_RECEIVED
    input: bool | str | None = None


class SetupComplete(BaseModel):
    """Setup finished; ``device`` is the finalized device from the procedure."""
    kind: Literal[EventKind.DEVICE_SETUP_COMPLETE] = EventKind.DEVICE_SETUP_COMPLETE
    device: Device


class SetupFailed(BaseModel):
    """Setup raised; ``device`` is the device originally selected."""
    model_config = {"arbitrary_types_allowed": True}

    kind: Literal[EventKind.DEVICE_SETUP_ERROR] = EventKind.DEVICE_SETUP_ERROR
    device: Device
    message: str
    error: BaseException | None = Field(default=None, exclude=True)


class WatcherFailed(BaseModel):
    """Watching could not be resumed after setup within the retry budget."""
    kind: Literal[EventKind.WATCHER_FAILED] = EventKind.WATCHER_FAILED
    attempts: int
    message: str


Event = Union[
    DevicesDetected,
    DeviceSelected,
    DeviceDeselected,
    SetupInputRequired,
    SetupInputReceived,
    SetupComplete,
    SetupFailed,
    WatcherFailed,
]
