"""FastAPI application factory and configuration."""

from __future__ import annotations

from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devicehub import __version__
from devicehub.config import LauncherConfig, apply_env_overrides
from devicehub.core.launcher import DeviceLauncher
from devicehub.models.events import Event
from devicehub.providers.base import EnumerationProvider
from devicehub.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

EVENT_LOG_SIZE = 500


class EventLog:
    """Bounded, indexed record of notifications for polling clients."""

    def __init__(self, maxlen: int = EVENT_LOG_SIZE) -> None:
        self._entries: deque[tuple[int, dict[str, Any]]] = deque(maxlen=maxlen)
        self._next = 0

    @property
    def next_index(self) -> int:
        return self._next

    def append(self, event: Event) -> None:
        self._entries.append((self._next, event.model_dump(mode="json")))
        self._next += 1

    def since(self, index: int) -> list[dict[str, Any]]:
        return [dict(payload, index=i) for i, payload in self._entries if i >= index]


def create_app(
    config: LauncherConfig | None = None,
    provider_factory: Callable[[LauncherConfig], EnumerationProvider] | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Launcher configuration. Defaults to LauncherConfig with
            DEVICEHUB_* environment overrides applied.
        provider_factory: Builds the enumeration provider. Defaults to the
            pyserial-backed provider.

    Returns:
        Configured FastAPI application instance.
    """
    launcher_config = config if config is not None else apply_env_overrides(LauncherConfig())

    if provider_factory is None:
        from devicehub.providers.serial_ports import SerialPortProvider

        def provider_factory(cfg: LauncherConfig) -> EnumerationProvider:
            return SerialPortProvider(poll_interval_s=cfg.poll_interval_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("devicehub_api_starting")
        launcher = DeviceLauncher(provider_factory(launcher_config), launcher_config)
        events = EventLog()
        launcher.subscribe(events.append)
        app.state.launcher = launcher
        app.state.events = events
        await launcher.init()
        yield
        await launcher.shutdown()
        logger.info("devicehub_api_stopped")

    app = FastAPI(
        title="devicehub API",
        description="Device selection, hotplug watching and interactive device setup",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from devicehub.api.routes import devices
    app.include_router(devices.router, prefix="/api")

    return app


def create_default_app() -> FastAPI:
    """Entry point for ``uvicorn --factory``."""
    setup_logging()
    return create_app()
