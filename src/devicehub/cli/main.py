"""devicehub CLI - list, watch and set up attached debug/programming devices."""

from __future__ import annotations

import asyncio
import json

import click

from devicehub.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

_TRAIT_HELP = "Comma separated traits to match (serialport, usb, jlink, nordic_usb, mcuboot)"
_CANCEL = "cancel"


def _load_config(traits: str | None, setup: str | None, allow_custom_device: bool):
    """Build a LauncherConfig from CLI options on top of environment overrides."""
    from dataclasses import replace

    from devicehub.config import LauncherConfig, apply_env_overrides, load_setup_procedure
    from devicehub.models.device import DeviceTraits
    from devicehub.models.setup import DeviceSetupConfig

    config = apply_env_overrides(LauncherConfig())
    if traits:
        config = replace(config, selector_traits=DeviceTraits.parse(traits))
    if setup:
        config = replace(
            config,
            device_setup=DeviceSetupConfig(
                setup_procedure=load_setup_procedure(setup),
                allow_custom_device=allow_custom_device,
            ),
        )
    return config


def _make_provider(config):
    from devicehub.providers.serial_ports import SerialPortProvider

    return SerialPortProvider(poll_interval_s=config.poll_interval_s)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-output", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, debug: bool, json_output: bool) -> None:
    """devicehub - hotplug-aware device selection and setup."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["json_output"] = json_output
    setup_logging(level="DEBUG" if debug else "INFO", json_output=json_output)


@cli.command()
@click.option("--traits", default=None, help=_TRAIT_HELP)
@click.pass_context
def scan(ctx: click.Context, traits: str | None) -> None:
    """List attached devices once."""
    from devicehub.exceptions import DeviceHubError
    from devicehub.models.device import normalize_devices

    try:
        config = _load_config(traits, None, False)
        provider = _make_provider(config)
        devices = normalize_devices(provider.enumerate(config.selector_traits))
    except (DeviceHubError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    if ctx.obj.get("json_output"):
        click.echo(json.dumps([d.model_dump(mode="json") for d in devices], indent=2))
        return
    if not devices:
        click.echo("No devices found.")
        return
    click.echo(f"Found {len(devices)} device(s):")
    for i, dev in enumerate(devices):
        port = dev.serialport.com_name if dev.serialport else "-"
        click.echo(f"  [{i}] {dev.serial_number:<16} {dev.display_name:<28} {port}")


def _describe(event) -> str:
    from devicehub.models.events import EventKind

    kind = event.kind
    if kind == EventKind.DEVICES_DETECTED:
        serials = ", ".join(d.serial_number for d in event.devices) or "none"
        return f"devices: {serials}"
    if kind == EventKind.DEVICE_SELECTED:
        return f"selected {event.device.serial_number}"
    if kind == EventKind.DEVICE_DESELECTED:
        return "deselected"
    if kind == EventKind.DEVICE_SETUP_INPUT_REQUIRED:
        return f"input required: {event.message}"
    if kind == EventKind.DEVICE_SETUP_INPUT_RECEIVED:
        return f"input received: {event.input}"
    if kind == EventKind.DEVICE_SETUP_COMPLETE:
        return f"setup complete for {event.device.serial_number}"
    if kind == EventKind.DEVICE_SETUP_ERROR:
        return f"setup failed for {event.device.serial_number}: {event.message}"
    return f"watcher failed: {event.message}"


async def _ask_user(launcher, message: str, choices: tuple[str, ...] | None) -> None:
    """Answer a setup prompt from the terminal without blocking the event loop."""
    if choices is None:
        answer = await asyncio.to_thread(click.confirm, message, default=False)
    else:
        answer = await asyncio.to_thread(
            click.prompt, message, type=click.Choice([*choices, _CANCEL])
        )
        if answer == _CANCEL:
            answer = None
    launcher.provide_setup_input(answer or None)


async def _run_watch(config, json_output: bool, select: str | None, duration: float | None) -> None:
    from devicehub.core.launcher import DeviceLauncher
    from devicehub.models.events import EventKind

    prompts: set[asyncio.Task] = set()

    async with DeviceLauncher(_make_provider(config), config) as launcher:

        def on_event(event) -> None:
            if json_output:
                click.echo(json.dumps(event.model_dump(mode="json")))
            else:
                click.echo(_describe(event))
            if event.kind == EventKind.DEVICE_SETUP_INPUT_REQUIRED:
                task = asyncio.create_task(_ask_user(launcher, event.message, event.choices))
                prompts.add(task)
                task.add_done_callback(prompts.discard)

        launcher.subscribe(on_event)
        # The initial enumeration ran before the listener was attached
        click.echo(_describe_devices(launcher.registry.detected_devices, json_output))

        if select:
            device = launcher.registry.find(select)
            if device is None:
                raise click.ClickException(f"Device {select} is not attached")
            await launcher.select_and_setup(device)

        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()


def _describe_devices(devices, json_output: bool) -> str:
    from devicehub.models.events import DevicesDetected

    event = DevicesDetected(devices=devices)
    return json.dumps(event.model_dump(mode="json")) if json_output else _describe(event)


@cli.command()
@click.option("--traits", default=None, help=_TRAIT_HELP)
@click.option("--setup", "setup_target", default=None, help="Setup procedure as 'module:function'")
@click.option("--allow-custom-device", is_flag=True, help="Keep the selection when setup fails")
@click.option("--select", default=None, help="Serial number to select and set up on start")
@click.option("--duration", type=float, default=None, help="Stop after N seconds (default: run until Ctrl+C)")
@click.pass_context
def watch(
    ctx: click.Context,
    traits: str | None,
    setup_target: str | None,
    allow_custom_device: bool,
    select: str | None,
    duration: float | None,
) -> None:
    """Watch for devices and optionally set one up interactively."""
    from devicehub.exceptions import DeviceHubError

    try:
        config = _load_config(traits, setup_target, allow_custom_device)
    except (DeviceHubError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        asyncio.run(_run_watch(config, ctx.obj.get("json_output", False), select, duration))
    except KeyboardInterrupt:
        logger.info("watch_interrupted")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8000, help="HTTP port")
@click.option("--traits", default=None, help=_TRAIT_HELP)
@click.option("--setup", "setup_target", default=None, help="Setup procedure as 'module:function'")
@click.option("--allow-custom-device", is_flag=True, help="Keep the selection when setup fails")
def serve(
    host: str,
    port: int,
    traits: str | None,
    setup_target: str | None,
    allow_custom_device: bool,
) -> None:
    """Start the HTTP API server."""
    import uvicorn

    from devicehub.api.app import create_app
    from devicehub.exceptions import DeviceHubError

    try:
        config = _load_config(traits, setup_target, allow_custom_device)
    except (DeviceHubError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    app = create_app(config)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
