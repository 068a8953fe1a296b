from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from webview_dev.config import RunConfig, parse_bool


def test_defaults_from_empty_environment() -> None:
    cfg = RunConfig.from_environ({})
    assert cfg.dev_server_url == "http://10.0.2.2:5173"
    assert cfg.skip_dev_server is False
    assert cfg.dev_server_dir == Path("webview")
    assert cfg.dev_server_attempts == 60
    assert cfg.apk_path == Path("app-debug.apk")
    assert cfg.app_component == "com.ebview.android/.MainActivity"
    assert cfg.emulator_port == 5554
    assert cfg.boot_timeout_s == 300
    assert cfg.devtools_port == 9222
    assert cfg.open_browser is True
    assert cfg.emulator_serial == "emulator-5554"


def test_env_values_are_parsed() -> None:
    cfg = RunConfig.from_environ(
        {
            "ANDROID_AVD": "My_AVD",
            "ANDROID_DEVICE": "s22",
            "SKIP_VITE_SERVER": "1",
            "VITE_DEV_SERVER_ATTEMPTS": "5",
            "ANDROID_EMULATOR_PORT": "5556",
            "ANDROID_EMULATOR_HEADLESS": "yes",
            "WEBVIEW_DEV_OPEN_BROWSER": "off",
            "ANDROID_APK": "out/app.apk",
        }
    )
    assert cfg.avd_name == "My_AVD"
    assert cfg.device == "s22"
    assert cfg.skip_dev_server is True
    assert cfg.dev_server_attempts == 5
    assert cfg.emulator_serial == "emulator-5556"
    assert cfg.headless is True
    assert cfg.open_browser is False
    assert cfg.apk_path == Path("out/app.apk")


def test_empty_strings_count_as_unset() -> None:
    cfg = RunConfig.from_environ({"ANDROID_APP_COMPONENT": "", "ANDROID_EMULATOR_PORT": "  "})
    assert cfg.app_component == "com.ebview.android/.MainActivity"
    assert cfg.emulator_port == 5554


def test_overrides_win_over_environment() -> None:
    cfg = RunConfig.from_environ({"ANDROID_DEVICE": "note10"}, device="s22", apk_path=None)
    assert cfg.device == "s22"
    assert cfg.apk_path == Path("app-debug.apk")


@pytest.mark.parametrize("port", ["5555", "5000", "5700"])
def test_invalid_emulator_port_rejected(port: str) -> None:
    with pytest.raises(ValidationError):
        RunConfig.from_environ({"ANDROID_EMULATOR_PORT": port})


def test_invalid_bool_and_url_rejected() -> None:
    with pytest.raises(ValidationError):
        RunConfig.from_environ({"SKIP_VITE_SERVER": "maybe"})
    with pytest.raises(ValidationError):
        RunConfig.from_environ({"VITE_DEV_SERVER_URL": "localhost:5173"})


def test_config_is_frozen_and_strict() -> None:
    cfg = RunConfig()
    with pytest.raises(ValidationError):
        cfg.emulator_port = 5556  # type: ignore[misc]
    with pytest.raises(ValidationError):
        RunConfig(unknown_field=1)  # type: ignore[call-arg]


def test_host_url_and_dev_port() -> None:
    cfg = RunConfig.from_environ({"VITE_DEV_SERVER_URL": "http://10.0.2.2:5173/app/"})
    assert cfg.host_dev_server_url == "http://127.0.0.1:5173/app/"
    assert cfg.dev_server_port == 5173

    other = RunConfig.from_environ({"VITE_DEV_SERVER_URL": "https://dev.example.test"})
    assert other.host_dev_server_url == "https://dev.example.test"
    assert other.dev_server_port == 443


def test_parse_bool() -> None:
    assert parse_bool("TRUE") is True
    assert parse_bool(" 0 ") is False
    with pytest.raises(ValueError):
        parse_bool("2")


@pytest.mark.parametrize(
    "url", ["http://10.0.2.2:abc", "http://10.0.2.2:99999", "http://127.0.0.1:0/"]
)
def test_dev_server_url_with_bad_port_rejected(url: str) -> None:
    with pytest.raises(ValidationError, match="invalid port"):
        RunConfig.from_environ({"VITE_DEV_SERVER_URL": url})
