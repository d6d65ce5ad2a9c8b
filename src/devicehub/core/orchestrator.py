"""Per-device setup state machine.

Setup pauses the hotplug watcher before touching the device, since devices
cycling through bootloader mode transiently disappear and would otherwise be
deselected. The watcher is resumed on every exit path.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping

from devicehub.config import LauncherConfig
from devicehub.core.input_channel import InputChannel, SetupPrompter
from devicehub.core.notifier import Notifier
from devicehub.core.registry import DeviceRegistry
from devicehub.core.watcher import HotplugWatcher
from devicehub.exceptions import SetupInProgressError
from devicehub.models.device import Device, normalize_device
from devicehub.models.events import SetupComplete, SetupFailed, WatcherFailed
from devicehub.models.setup import PendingPrompt, SetupSession, SetupState, SetupStatus
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)


class SetupOrchestrator:
    """Runs one setup session at a time for the selected device."""

    def __init__(
        self,
        registry: DeviceRegistry,
        watcher: HotplugWatcher,
        channel: InputChannel,
        notifier: Notifier,
        config: LauncherConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._watcher = watcher
        self._channel = channel
        self._notifier = notifier
        self._config = config
        self._sleep = sleep
        self._state = SetupState.IDLE
        self._session: SetupSession | None = None
        self._task: asyncio.Task | None = None
        self._closing = False

    @property
    def state(self) -> SetupState:
        return self._state

    @property
    def session(self) -> SetupSession | None:
        return self._session

    @property
    def is_busy(self) -> bool:
        return self._session is not None or (self._task is not None and not self._task.done())

    def status(self) -> SetupStatus:
        session = self._session
        return SetupStatus(
            state=self._state,
            device=session.device if session else None,
            pending_prompt=session.pending_prompt if session else None,
        )

    def start_setup(self, device: Device) -> asyncio.Task:
        """Run ``select_and_setup`` as a background task.

        Raises:
            SetupInProgressError: If a setup session is already running.
        """
        if self.is_busy:
            raise SetupInProgressError(
                "Device setup is already in progress", serial_number=device.serial_number
            )
        self._task = asyncio.create_task(self.select_and_setup(device))
        return self._task

    async def select_and_setup(self, device: Device) -> Device | None:
        """Select ``device`` and run the configured setup for it.

        Returns:
            The finalized device on success, the device itself when no setup
            is configured, or None when setup failed or was refused.
        """
        if self._session is not None:
            logger.warning(
                "setup_already_in_progress",
                serial_number=device.serial_number,
                active=self._session.device.serial_number,
            )
            return None

        self._set_state(SetupState.SELECTED)
        self._registry.select(device)

        setup = self._config.device_setup
        if setup is None:
            self._set_state(SetupState.IDLE)
            return device

        self._session = SetupSession(device=device, config=setup)
        self._set_state(SetupState.WATCHING_PAUSED)
        self._watcher.stop()
        try:
            return await self._run_setup(self._session)
        finally:
            self._session = None
            if not self._closing:
                await self._resume_watching()
            self._set_state(SetupState.IDLE)

    def open(self) -> None:
        """Allow setup sessions to resume watching again after ``close``."""
        self._closing = False

    async def close(self) -> None:
        """Abandon any pending prompt and running setup without resuming watching."""
        self._closing = True
        self._channel.cancel_pending()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run_setup(self, session: SetupSession) -> Device | None:
        device = session.device
        setup = session.config
        try:
            if setup.release_current_device is not None:
                released = setup.release_current_device()
                if inspect.isawaitable(released):
                    await released
            prompter = SetupPrompter(self._channel, on_waiting=self._on_prompt)
            finalized = setup.setup_procedure(device, prompter)
            if inspect.isawaitable(finalized):
                finalized = await finalized
        except Exception as exc:
            self._set_state(SetupState.FAILED)
            self._notifier.emit(
                SetupFailed(device=device, message=str(exc) or type(exc).__name__, error=exc)
            )
            if setup.allow_custom_device:
                logger.warning(
                    "device_setup_failed_custom_allowed",
                    serial_number=device.serial_number,
                    error=str(exc),
                )
            else:
                logger.error(
                    "device_setup_failed",
                    serial_number=device.serial_number,
                    error=str(exc),
                )
                self._registry.deselect()
            return None

        if finalized is None:
            finalized = device
        elif isinstance(finalized, Mapping):
            finalized = normalize_device(finalized)

        self._set_state(SetupState.COMPLETED)
        logger.info("device_setup_complete", serial_number=finalized.serial_number)
        self._notifier.emit(SetupComplete(device=finalized))
        return finalized

    async def _resume_watching(self) -> bool:
        traits = self._watcher.traits
        if traits is None:
            traits = self._config.selector_traits
        attempts = self._config.restart_attempts
        delay = self._config.restart_backoff_s
        for attempt in range(1, attempts + 1):
            if await self._watcher.start(traits):
                return True
            logger.warning("watcher_restart_failed", attempt=attempt, attempts=attempts)
            if attempt < attempts:
                await self._sleep(delay)
                delay *= 2

        logger.error("watcher_restart_exhausted", attempts=attempts)
        self._notifier.emit(
            WatcherFailed(
                attempts=attempts,
                message=f"Device watching could not be resumed after {attempts} attempt(s)",
            )
        )
        return False

    def _on_prompt(self, prompt: PendingPrompt | None) -> None:
        if self._session is None:
            return
        self._session.pending_prompt = prompt
        self._set_state(SetupState.AWAITING_INPUT if prompt else SetupState.WATCHING_PAUSED)

    def _set_state(self, state: SetupState) -> None:
        if state != self._state:
            logger.debug("setup_state", previous=self._state.value, state=state.value)
        self._state = state
