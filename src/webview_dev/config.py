"""Run configuration, read from environment variables.

All knobs of a ``webview-dev`` run are environment variables (optionally
seeded from a ``.env`` file by the CLI). ``RunConfig.from_environ`` turns a
mapping into a validated, immutable model; empty strings count as unset.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from webview_dev.devserver import host_url

DEFAULT_DEV_SERVER_URL = "http://10.0.2.2:5173"
DEFAULT_APP_COMPONENT = "com.ebview.android/.MainActivity"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# env var -> field name
_ENV_FIELDS: Dict[str, str] = {
    "ANDROID_AVD": "avd_name",
    "ANDROID_DEVICE": "device",
    "VITE_DEV_SERVER_URL": "dev_server_url",
    "SKIP_VITE_SERVER": "skip_dev_server",
    "VITE_DEV_SERVER_DIR": "dev_server_dir",
    "VITE_DEV_SERVER_ATTEMPTS": "dev_server_attempts",
    "ANDROID_EMULATOR": "emulator_override",
    "ANDROID_ADB": "adb_override",
    "ANDROID_HOME": "android_home",
    "ANDROID_SDK_ROOT": "android_sdk_root",
    "ANDROID_APK": "apk_path",
    "ANDROID_APP_COMPONENT": "app_component",
    "ANDROID_BUILD_APK": "build_apk",
    "ANDROID_PROJECT_DIR": "project_dir",
    "ANDROID_EMULATOR_PORT": "emulator_port",
    "ANDROID_EMULATOR_HEADLESS": "headless",
    "ANDROID_BOOT_TIMEOUT_S": "boot_timeout_s",
    "DEVTOOLS_PORT": "devtools_port",
    "WEBVIEW_DEV_OPEN_BROWSER": "open_browser",
}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"expected a boolean (1/0/true/false/yes/no/on/off), got {value!r}")


class RunConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    avd_name: Optional[str] = None
    device: Optional[str] = None

    dev_server_url: str = DEFAULT_DEV_SERVER_URL
    skip_dev_server: bool = False
    dev_server_dir: Path = Path("webview")
    dev_server_command: tuple[str, ...] = ("npm", "run", "dev")
    dev_server_attempts: int = Field(default=60, ge=1, le=3600)
    dev_server_interval_s: float = Field(default=1.0, gt=0, le=60)

    emulator_override: Optional[Path] = None
    adb_override: Optional[Path] = None
    android_home: Optional[Path] = None
    android_sdk_root: Optional[Path] = None

    apk_path: Path = Path("app-debug.apk")
    # An explicit empty ANDROID_APP_COMPONENT is treated as unset, not as "no component".
    app_component: Optional[str] = DEFAULT_APP_COMPONENT
    build_apk: bool = False
    project_dir: Path = Path("android")

    emulator_port: int = Field(default=5554, ge=5554, le=5682)
    headless: bool = False
    boot_timeout_s: float = Field(default=300.0, gt=0)
    boot_poll_interval_s: float = Field(default=2.0, gt=0)

    devtools_port: int = Field(default=9222, ge=1, le=65535)
    open_browser: bool = True

    @field_validator("skip_dev_server", "build_apk", "headless", "open_browser", mode="before")
    @classmethod
    def _coerce_bool(cls, v: Any) -> bool:
        return parse_bool(v)

    @field_validator("emulator_port")
    @classmethod
    def _even_port(cls, v: int) -> int:
        if v % 2:
            raise ValueError("emulator console port must be even (adb uses port+1)")
        return v

    @field_validator("dev_server_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        parts = urlsplit(v.strip())
        if parts.scheme not in {"http", "https"} or not parts.hostname:
            raise ValueError(f"dev server URL must be http(s)://host[:port], got {v!r}")
        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"dev server URL has an invalid port: {v!r}") from e
        if port == 0:
            raise ValueError(f"dev server URL has an invalid port: {v!r}")
        return v.strip()

    @classmethod
    def from_environ(cls, environ: Mapping[str, str], **overrides: Any) -> "RunConfig":
        """Build a config from env vars; keyword overrides (CLI flags) win."""

        data: Dict[str, Any] = {}
        for var, field_name in _ENV_FIELDS.items():
            raw = environ.get(var)
            if raw is None or not str(raw).strip():
                continue
            data[field_name] = str(raw).strip()
        for key, value in overrides.items():
            if value is not None:
                data[key] = value
        return cls(**data)

    @property
    def sdk_root_hint(self) -> Optional[Path]:
        return self.android_home or self.android_sdk_root

    @property
    def host_dev_server_url(self) -> str:
        """The dev-server URL as reachable from the host (10.0.2.2 -> 127.0.0.1)."""

        return host_url(self.dev_server_url)

    @property
    def dev_server_port(self) -> int:
        parts = urlsplit(self.dev_server_url)
        if parts.port:
            return parts.port
        return 443 if parts.scheme == "https" else 80

    @property
    def emulator_serial(self) -> str:
        return f"emulator-{self.emulator_port}"
