"""Device watching, selection and setup-input endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from devicehub.core.launcher import DeviceLauncher
from devicehub.core.registry import RegistryState
from devicehub.exceptions import DeviceHubError, DeviceNotFoundError, SetupInProgressError
from devicehub.models.device import DeviceTraits, Trait
from devicehub.models.setup import SetupStatus

router = APIRouter(tags=["devices"])

_STREAM_POLL_S = 0.25


class WatchRequest(BaseModel):
    traits: list[Trait] | None = None


class WatchResponse(BaseModel):
    watching: bool
    traits: str | None = None


class SetupInputRequest(BaseModel):
    input: bool | str | None = None


class SetupInputResponse(BaseModel):
    accepted: bool


class EventsResponse(BaseModel):
    next: int
    events: list[dict]


def _launcher(request: Request) -> DeviceLauncher:
    return request.app.state.launcher


def _watch_response(launcher: DeviceLauncher) -> WatchResponse:
    traits = launcher.watcher.traits
    return WatchResponse(
        watching=launcher.watcher.is_watching,
        traits=str(traits) if traits is not None else None,
    )


@router.get("/devices", response_model=RegistryState)
async def list_devices(request: Request) -> RegistryState:
    """Currently detected devices and the selected serial number."""
    return _launcher(request).registry.snapshot()


@router.post("/devices/watch/start", response_model=WatchResponse)
async def start_watching(request: Request, body: WatchRequest | None = None) -> WatchResponse:
    """Start (or restart) hotplug watching."""
    launcher = _launcher(request)
    traits = None
    if body is not None and body.traits is not None:
        traits = DeviceTraits(traits=frozenset(body.traits))
    try:
        await launcher.start_watching(traits)
    except SetupInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _watch_response(launcher)


@router.post("/devices/watch/stop", response_model=WatchResponse)
async def stop_watching(request: Request) -> WatchResponse:
    """Stop hotplug watching. Safe when not watching."""
    launcher = _launcher(request)
    launcher.stop_watching()
    return _watch_response(launcher)


@router.post("/devices/deselect", response_model=RegistryState)
async def deselect_device(request: Request) -> RegistryState:
    """Clear the current selection."""
    launcher = _launcher(request)
    launcher.deselect()
    return launcher.registry.snapshot()


@router.post("/devices/{serial_number}/select", response_model=SetupStatus)
async def select_device(request: Request, serial_number: str) -> SetupStatus:
    """Select a detected device and start its setup in the background."""
    launcher = _launcher(request)
    try:
        device = launcher.find_device(serial_number)
        launcher.begin_setup(device)
    except DeviceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SetupInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except DeviceHubError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    # Let the setup task run up to its first suspension point
    await asyncio.sleep(0)
    return launcher.setup_status()


@router.get("/setup", response_model=SetupStatus)
async def setup_status(request: Request) -> SetupStatus:
    """State of the setup state machine and any pending prompt."""
    return _launcher(request).setup_status()


@router.post("/setup/input", response_model=SetupInputResponse)
async def provide_setup_input(request: Request, body: SetupInputRequest) -> SetupInputResponse:
    """Answer the pending setup prompt."""
    accepted = _launcher(request).provide_setup_input(body.input)
    if not accepted:
        raise HTTPException(status_code=409, detail="No setup input is pending")
    return SetupInputResponse(accepted=True)


@router.get("/events", response_model=EventsResponse)
async def list_events(request: Request, since: int = 0) -> EventsResponse:
    """Notifications with index >= ``since``."""
    log = request.app.state.events
    return EventsResponse(next=log.next_index, events=log.since(since))


@router.websocket("/events/stream")
async def event_stream(websocket: WebSocket) -> None:
    """Push notifications to the client as they are emitted."""
    log = websocket.app.state.events
    cursor = log.next_index
    await websocket.accept()
    try:
        while True:
            await asyncio.sleep(_STREAM_POLL_S)
            for payload in log.since(cursor):
                await websocket.send_json(payload)
                cursor = payload["index"] + 1
    except WebSocketDisconnect:
        pass
