"""Setup configuration and session state."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from devicehub.models.device import Device

if TYPE_CHECKING:
    from devicehub.core.input_channel import SetupPrompter

SetupProcedure = Callable[[Device, "SetupPrompter"], Awaitable[Device] | Device]
ReleaseStep = Callable[[], Any]


class SetupState(StrEnum):
    """States of the per-device setup state machine."""
    IDLE = "idle"
    SELECTED = "selected"
    WATCHING_PAUSED = "watching_paused"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceSetupConfig:
    """Application-supplied setup sequence.

    ``setup_procedure`` receives the selected device and a prompter offering
    ``confirm`` and ``choose``; it returns the finalized device, either
    directly or as an awaitable.
    ``release_current_device`` may be sync or async and is awaited fully
    before the procedure starts.
    """
    setup_procedure: SetupProcedure
    release_current_device: ReleaseStep | None = None
    allow_custom_device: bool = False


class PendingPrompt(BaseModel):
    """The one outstanding question put to the user."""
    model_config = {"frozen": True}

    message: str
    choices: tuple[str, ...] | None = None

    @property
    def is_confirmation(self) -> bool:
        return self.choices is None


@dataclass
class SetupSession:
    """Ephemeral record of one in-progress setup attempt."""

    device: Device
    config: DeviceSetupConfig
    pending_prompt: PendingPrompt | None = None


class SetupStatus(BaseModel):
    """Serializable view of the orchestrator for the API layer."""
    state: SetupState
    device: Device | None = None
    pending_prompt: PendingPrompt | None = None
