"""Unit tests for devicehub.config: validation, environment overrides, procedure loading."""

from __future__ import annotations

import pytest

from devicehub.config import LauncherConfig, apply_env_overrides, load_setup_procedure
from devicehub.exceptions import ConfigurationError
from devicehub.models.device import DeviceTraits, normalize_device


class TestLauncherConfig:
    def test_defaults(self):
        config = LauncherConfig()
        assert config.device_setup is None
        assert config.selector_traits == DeviceTraits()
        assert config.restart_attempts == 3

    @pytest.mark.parametrize(
        "kwargs",
        [{"poll_interval_s": 0}, {"restart_attempts": 0}, {"restart_backoff_s": -1}],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            LauncherConfig(**kwargs)


class TestEnvOverrides:
    def test_no_env_returns_same_config(self):
        config = LauncherConfig()
        assert apply_env_overrides(config, env={}) is config

    def test_all_overrides(self):
        env = {
            "DEVICEHUB_TRAITS": "jlink,nordic_usb",
            "DEVICEHUB_POLL_INTERVAL": "0.25",
            "DEVICEHUB_RESTART_ATTEMPTS": "5",
            "DEVICEHUB_RESTART_BACKOFF": "2",
        }
        config = apply_env_overrides(LauncherConfig(), env=env)

        assert config.selector_traits == DeviceTraits.parse("jlink,nordic_usb")
        assert config.poll_interval_s == 0.25
        assert config.restart_attempts == 5
        assert config.restart_backoff_s == 2.0

    def test_blank_values_ignored(self):
        config = apply_env_overrides(LauncherConfig(), env={"DEVICEHUB_POLL_INTERVAL": " "})
        assert config.poll_interval_s == 1.0

    @pytest.mark.parametrize(
        "env",
        [
            {"DEVICEHUB_POLL_INTERVAL": "fast"},
            {"DEVICEHUB_RESTART_ATTEMPTS": "1.5"},
            {"DEVICEHUB_TRAITS": "bluetooth"},
            {"DEVICEHUB_RESTART_ATTEMPTS": "0"},
        ],
    )
    def test_invalid_values_raise(self, env):
        with pytest.raises(ConfigurationError):
            apply_env_overrides(LauncherConfig(), env=env)

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("DEVICEHUB_RESTART_ATTEMPTS", "7")
        assert apply_env_overrides(LauncherConfig()).restart_attempts == 7


class TestLoadSetupProcedure:
    def test_loads_callable(self):
        assert load_setup_procedure("devicehub.models.device:normalize_device") is normalize_device

    @pytest.mark.parametrize(
        "target",
        [
            "no_colon",
            ":missing_module",
            "devicehub.models.device:",
            "devicehub.does_not_exist:run",
            "devicehub.models.device:not_there",
            "devicehub.config:ENV_TRAITS",
        ],
    )
    def test_invalid_targets(self, target):
        with pytest.raises(ConfigurationError):
            load_setup_procedure(target)
