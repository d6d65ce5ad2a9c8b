"""Device lifecycle core: registry, watcher, input channel and setup orchestration."""

from devicehub.core.input_channel import InputChannel, SetupPrompter
from devicehub.core.launcher import DeviceLauncher
from devicehub.core.notifier import Notifier
from devicehub.core.orchestrator import SetupOrchestrator
from devicehub.core.registry import DeviceRegistry, RegistryState
from devicehub.core.watcher import HotplugWatcher

__all__ = [
    "DeviceLauncher",
    "DeviceRegistry",
    "HotplugWatcher",
    "InputChannel",
    "Notifier",
    "RegistryState",
    "SetupOrchestrator",
    "SetupPrompter",
]
