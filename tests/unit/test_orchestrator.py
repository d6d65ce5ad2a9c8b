"""Unit tests for devicehub.core.orchestrator: setup state machine and watcher pausing."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeProvider, kinds, raw_device, wait_for
from pydantic import ValidationError
from structlog.testing import capture_logs

from devicehub.config import LauncherConfig
from devicehub.core.input_channel import InputChannel
from devicehub.core.launcher import DeviceLauncher
from devicehub.core.notifier import Notifier
from devicehub.core.orchestrator import SetupOrchestrator
from devicehub.core.registry import DeviceRegistry
from devicehub.core.watcher import HotplugWatcher
from devicehub.exceptions import CancelledByUser, SetupInProgressError
from devicehub.models.device import Device
from devicehub.models.events import EventKind, SetupComplete, SetupFailed
from devicehub.models.setup import DeviceSetupConfig, SetupState


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _started_launcher(provider, procedure=None, **setup_options) -> tuple[DeviceLauncher, list]:
    setup = None
    if procedure is not None:
        setup = DeviceSetupConfig(setup_procedure=procedure, **setup_options)
    launcher = DeviceLauncher(provider, LauncherConfig(device_setup=setup, restart_backoff_s=0))
    await launcher.init()
    events: list = []
    launcher.subscribe(events.append)
    return launcher, events


def _device_a(launcher: DeviceLauncher) -> Device:
    return launcher.find_device("A")


def _index(events: list, kind: EventKind) -> int:
    return [e.kind for e in events].index(kind)


# ---------------------------------------------------------------------------
# Selection without setup
# ---------------------------------------------------------------------------

class TestWithoutSetup:
    @pytest.mark.asyncio
    async def test_select_only_emits_selected(self, provider):
        launcher, events = await _started_launcher(provider)

        result = await launcher.select_and_setup(_device_a(launcher))

        assert result.serial_number == "A"
        assert kinds(events) == ["device_selected"]
        assert launcher.watcher.is_watching
        assert launcher.orchestrator.state == SetupState.IDLE
        await launcher.shutdown()


# ---------------------------------------------------------------------------
# Successful setup
# ---------------------------------------------------------------------------

class TestSetupSuccess:
    @pytest.mark.asyncio
    async def test_choice_is_relayed_and_setup_completes(self, provider):
        received = []
        watching_during_setup = []

        async def procedure(device, prompter):
            watching_during_setup.append(launcher.watcher.is_watching)
            received.append(await prompter.choose("Pick mode", ["DFU", "Normal"]))
            watching_during_setup.append(launcher.watcher.is_watching)
            return device.model_copy(update={"nickname": "finalized"})

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))

        await wait_for(lambda: launcher.input_channel.has_pending)
        assert launcher.orchestrator.state == SetupState.AWAITING_INPUT
        assert launcher.setup_status().pending_prompt.message == "Pick mode"
        assert provider.subscriptions == {}

        assert launcher.provide_setup_input("DFU") is True
        result = await task

        assert received == ["DFU"]
        assert watching_during_setup == [False, False]
        assert result.nickname == "finalized"
        complete = next(e for e in events if isinstance(e, SetupComplete))
        assert complete.device.nickname == "finalized"
        assert launcher.watcher.is_watching
        assert len(provider.subscriptions) == 1
        assert launcher.orchestrator.state == SetupState.IDLE
        assert launcher.orchestrator.session is None
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_notification_order(self, provider):
        async def procedure(device, prompter):
            await prompter.confirm("Program device?")
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)
        launcher.provide_setup_input(True)
        await task

        assert kinds(events) == [
            "device_selected",
            "device_setup_input_required",
            "device_setup_input_received",
            "device_setup_complete",
            "devices_detected",
        ]
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_bootloader_cycling_does_not_deselect(self, provider):
        async def procedure(device, prompter):
            # Device drops off the bus while rebooting into its bootloader
            provider.set_devices("B")
            provider.fire_change("A")
            await asyncio.sleep(0.01)
            provider.set_devices("A", "B")
            return device

        launcher, events = await _started_launcher(provider, procedure)
        await launcher.select_and_setup(_device_a(launcher))

        assert "device_deselected" not in kinds(events)
        assert launcher.registry.selected_serial_number == "A"
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_release_step_runs_before_procedure(self, provider):
        calls = []

        async def release():
            calls.append(("release", launcher.watcher.is_watching))

        async def procedure(device, prompter):
            calls.append(("setup", launcher.watcher.is_watching))
            return device

        launcher, _ = await _started_launcher(provider, procedure, release_current_device=release)
        await launcher.select_and_setup(_device_a(launcher))

        assert calls == [("release", False), ("setup", False)]
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_sync_release_step(self, provider):
        calls = []

        async def procedure(device, prompter):
            calls.append("setup")
            return device

        launcher, _ = await _started_launcher(
            provider, procedure, release_current_device=lambda: calls.append("release")
        )
        await launcher.select_and_setup(_device_a(launcher))

        assert calls == ["release", "setup"]
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_procedure_returning_none_completes_with_original(self, provider):
        async def procedure(device, prompter):
            return None

        launcher, events = await _started_launcher(provider, procedure)
        result = await launcher.select_and_setup(_device_a(launcher))

        assert result.serial_number == "A"
        assert any(isinstance(e, SetupComplete) for e in events)
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_sync_procedure(self, provider):
        def procedure(device, prompter):
            return device.model_copy(update={"nickname": "flashed"})

        launcher, events = await _started_launcher(provider, procedure)
        result = await launcher.select_and_setup(_device_a(launcher))

        assert result.nickname == "flashed"
        assert "device_setup_error" not in kinds(events)
        assert launcher.watcher.is_watching
        await launcher.shutdown()


# ---------------------------------------------------------------------------
# Failed setup
# ---------------------------------------------------------------------------

class TestSetupFailure:
    @pytest.mark.asyncio
    async def test_failure_emits_error_deselects_and_restarts(self, provider):
        error = RuntimeError("flash failed")

        async def procedure(device, prompter):
            raise error

        launcher, events = await _started_launcher(provider, procedure)
        with capture_logs() as logs:
            result = await launcher.select_and_setup(_device_a(launcher))

        assert result is None
        failed = next(e for e in events if isinstance(e, SetupFailed))
        assert failed.device.serial_number == "A"
        assert failed.error is error
        assert failed.message == "flash failed"
        assert _index(events, EventKind.DEVICE_SETUP_ERROR) < _index(events, EventKind.DEVICE_DESELECTED)
        assert launcher.registry.selected_serial_number is None
        assert launcher.watcher.is_watching
        assert any(
            log["event"] == "device_setup_failed" and log["serial_number"] == "A" for log in logs
        )
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_custom_device_keeps_selection(self, provider):
        async def procedure(device, prompter):
            raise RuntimeError("not a Nordic device")

        launcher, events = await _started_launcher(provider, procedure, allow_custom_device=True)
        await launcher.select_and_setup(_device_a(launcher))

        assert "device_setup_error" in kinds(events)
        assert "device_deselected" not in kinds(events)
        assert launcher.registry.selected_serial_number == "A"
        assert launcher.watcher.is_watching
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_release_failure_is_a_setup_error(self, provider):
        procedure_ran = []

        async def release():
            raise OSError("port busy")

        async def procedure(device, prompter):
            procedure_ran.append(True)
            return device

        launcher, events = await _started_launcher(provider, procedure, release_current_device=release)
        await launcher.select_and_setup(_device_a(launcher))

        assert procedure_ran == []
        assert next(e for e in events if isinstance(e, SetupFailed)).message == "port busy"
        assert launcher.watcher.is_watching
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_declined_confirmation_still_restarts_watcher(self, provider):
        answers = []

        async def procedure(device, prompter):
            answers.append(await prompter.confirm("Erase device?"))
            if not answers[-1]:
                raise CancelledByUser()
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)
        launcher.provide_setup_input(False)
        await task

        assert answers == [False]
        assert "device_setup_error" in kinds(events)
        assert launcher.watcher.is_watching
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_cancelled_choice_propagates_to_procedure(self, provider):
        async def procedure(device, prompter):
            await prompter.choose("Pick mode", ["DFU", "Normal"])
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)
        launcher.provide_setup_input(None)
        await task

        failed = next(e for e in events if isinstance(e, SetupFailed))
        assert isinstance(failed.error, CancelledByUser)
        assert launcher.watcher.is_watching
        await launcher.shutdown()


# ---------------------------------------------------------------------------
# Re-entrancy and shutdown
# ---------------------------------------------------------------------------

class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_begin_setup_while_busy_raises(self, provider):
        async def procedure(device, prompter):
            await prompter.confirm("Erase device?")
            return device

        launcher, _ = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))

        with pytest.raises(SetupInProgressError):
            launcher.begin_setup(launcher.find_device("B"))

        await wait_for(lambda: launcher.input_channel.has_pending)
        launcher.provide_setup_input(True)
        await task
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_select_while_session_active_is_refused(self, provider):
        async def procedure(device, prompter):
            await prompter.confirm("Erase device?")
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)
        events.clear()

        with capture_logs() as logs:
            assert await launcher.select_and_setup(launcher.find_device("B")) is None

        assert events == []
        assert launcher.registry.selected_serial_number == "A"
        assert any(log["event"] == "setup_already_in_progress" for log in logs)

        launcher.provide_setup_input(True)
        await task
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_abandons_pending_prompt(self, provider):
        async def procedure(device, prompter):
            await prompter.confirm("Erase device?")
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)

        await launcher.shutdown()

        assert task.cancelled()
        assert not launcher.watcher.is_watching
        assert provider.subscriptions == {}
        assert provider.closed
        assert not launcher.input_channel.has_pending
        assert "device_setup_complete" not in kinds(events)

    @pytest.mark.asyncio
    async def test_start_watching_refused_while_paused(self, provider):
        async def procedure(device, prompter):
            await prompter.confirm("Erase device?")
            return device

        launcher, _ = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)

        with pytest.raises(SetupInProgressError):
            await launcher.start_watching()
        assert not launcher.watcher.is_watching
        assert provider.subscriptions == {}

        launcher.provide_setup_input(True)
        await task
        assert launcher.watcher.is_watching
        assert await launcher.start_watching() is True
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_input_leaves_setup_answerable(self, provider):
        async def procedure(device, prompter):
            await prompter.choose("Pick mode", ["DFU", "Normal"])
            return device

        launcher, events = await _started_launcher(provider, procedure)
        task = launcher.begin_setup(_device_a(launcher))
        await wait_for(lambda: launcher.input_channel.has_pending)

        with pytest.raises(ValidationError):
            launcher.provide_setup_input(2)
        assert launcher.setup_status().state == SetupState.AWAITING_INPUT

        assert launcher.provide_setup_input("DFU") is True
        await task
        assert "device_setup_complete" in kinds(events)
        assert launcher.watcher.is_watching
        await launcher.shutdown()

    @pytest.mark.asyncio
    async def test_setup_after_restart_resumes_watching(self, provider):
        async def procedure(device, prompter):
            return device

        launcher, _ = await _started_launcher(provider, procedure)
        await launcher.shutdown()
        await launcher.init()
        assert launcher.watcher.is_watching

        await launcher.select_and_setup(_device_a(launcher))

        assert launcher.watcher.is_watching
        assert len(provider.subscriptions) == 1
        await launcher.shutdown()


# ---------------------------------------------------------------------------
# Watcher restart policy
# ---------------------------------------------------------------------------

class TestWatcherRestart:
    def _build(self, provider, procedure, attempts=3):
        notifier = Notifier()
        registry = DeviceRegistry(notifier)
        watcher = HotplugWatcher(provider, registry)
        channel = InputChannel(notifier)
        delays: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)

        config = LauncherConfig(
            device_setup=DeviceSetupConfig(setup_procedure=procedure),
            restart_attempts=attempts,
            restart_backoff_s=0.5,
        )
        orchestrator = SetupOrchestrator(registry, watcher, channel, notifier, config, sleep=fake_sleep)
        events: list = []
        notifier.subscribe(events.append)
        return orchestrator, watcher, delays, events

    @pytest.mark.asyncio
    async def test_exhausted_retries_escalate(self):
        provider = FakeProvider([raw_device("A")])

        async def procedure(device, prompter):
            provider.fail_enumerate = OSError("device lib wedged")
            return device

        orchestrator, watcher, delays, events = self._build(provider, procedure)
        with capture_logs() as logs:
            await orchestrator.select_and_setup(Device(serial_number="A"))

        assert delays == [0.5, 1.0]
        assert not watcher.is_watching
        assert events[-1].kind == EventKind.WATCHER_FAILED
        assert events[-1].attempts == 3
        assert any(log["event"] == "watcher_restart_exhausted" for log in logs)
        assert orchestrator.state == SetupState.IDLE

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self):
        provider = FakeProvider([raw_device("A")])
        original_enumerate = provider.enumerate
        failures = {"left": 0}

        def flaky_enumerate(traits):
            if failures["left"]:
                failures["left"] -= 1
                raise OSError("busy")
            return original_enumerate(traits)

        provider.enumerate = flaky_enumerate

        async def procedure(device, prompter):
            failures["left"] = 1
            return device

        orchestrator, watcher, delays, events = self._build(provider, procedure)
        await orchestrator.select_and_setup(Device(serial_number="A"))

        assert delays == [0.5]
        assert watcher.is_watching
        assert "watcher_failed" not in kinds(events)
        watcher.stop()
