"""Launcher configuration and environment overrides."""

from __future__ import annotations

import importlib
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from devicehub.exceptions import ConfigurationError
from devicehub.models.device import DeviceTraits
from devicehub.models.setup import DeviceSetupConfig, SetupProcedure

ENV_TRAITS = "DEVICEHUB_TRAITS"
ENV_POLL_INTERVAL = "DEVICEHUB_POLL_INTERVAL"
ENV_RESTART_ATTEMPTS = "DEVICEHUB_RESTART_ATTEMPTS"
ENV_RESTART_BACKOFF = "DEVICEHUB_RESTART_BACKOFF"


@dataclass(frozen=True)
class LauncherConfig:
    """Per-application launcher settings."""
    selector_traits: DeviceTraits = field(default_factory=DeviceTraits)
    device_setup: DeviceSetupConfig | None = None
    poll_interval_s: float = 1.0
    restart_attempts: int = 3
    restart_backoff_s: float = 0.5

    def __post_init__(self) -> None:
        if self.poll_interval_s <= 0:
            raise ConfigurationError(f"poll_interval_s must be positive, got {self.poll_interval_s}")
        if self.restart_attempts < 1:
            raise ConfigurationError(f"restart_attempts must be >= 1, got {self.restart_attempts}")
        if self.restart_backoff_s < 0:
            raise ConfigurationError(f"restart_backoff_s must be >= 0, got {self.restart_backoff_s}")


def _env_number(env: Mapping[str, str], name: str, kind: type) -> float | int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name}={raw!r} is not a valid {kind.__name__}") from exc


def apply_env_overrides(config: LauncherConfig, env: Mapping[str, str] | None = None) -> LauncherConfig:
    """Return ``config`` with any DEVICEHUB_* environment variables applied.

    Raises:
        ConfigurationError: If a variable is set to an unparsable value.
    """
    env = os.environ if env is None else env
    changes: dict = {}

    traits = env.get(ENV_TRAITS)
    if traits:
        try:
            changes["selector_traits"] = DeviceTraits.parse(traits)
        except ValueError as exc:
            raise ConfigurationError(f"{ENV_TRAITS}={traits!r}: {exc}") from exc

    poll = _env_number(env, ENV_POLL_INTERVAL, float)
    if poll is not None:
        changes["poll_interval_s"] = poll
    attempts = _env_number(env, ENV_RESTART_ATTEMPTS, int)
    if attempts is not None:
        changes["restart_attempts"] = attempts
    backoff = _env_number(env, ENV_RESTART_BACKOFF, float)
    if backoff is not None:
        changes["restart_backoff_s"] = backoff

    return replace(config, **changes) if changes else config


def load_setup_procedure(target: str) -> SetupProcedure:
    """Import a setup procedure given as ``"package.module:function"``.

    Raises:
        ConfigurationError: If the module or attribute cannot be found, or
            the attribute is not callable.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Setup procedure must look like 'module:function', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import setup module {module_name!r}: {exc}") from exc
    procedure = getattr(module, attr, None)
    if not callable(procedure):
        raise ConfigurationError(f"{target!r} does not name a callable")
    return procedure
