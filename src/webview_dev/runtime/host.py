"""Host platform capabilities.

All Windows/macOS/Linux differences (binary suffixes, default SDK location,
shell invocation style, download flavours, browser launching) are answered
here so the rest of the code never branches on ``sys.platform`` itself.
"""

from __future__ import annotations

import os
import platform
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Sequence

HostOS = Literal["windows", "macos", "linux"]
HostArch = Literal["x86_64", "arm64"]

_SHELL_SCRIPT_SUFFIXES = (".bat", ".cmd")


def _normalize_os(raw: str) -> HostOS:
    raw = raw.lower()
    if raw.startswith("win") or raw.startswith(("msys", "cygwin", "mingw")):
        return "windows"
    if raw == "darwin" or raw.startswith("mac"):
        return "macos"
    return "linux"


def _normalize_arch(raw: str) -> HostArch:
    raw = raw.lower()
    if raw in {"arm64", "aarch64", "armv8", "armv8l"}:
        return "arm64"
    return "x86_64"


def _cmd_quote(arg: str) -> str:
    # cmd.exe has no escape for '"' inside a quoted token; double it like PowerShell does.
    return '"' + str(arg).replace('"', '""') + '"'


@dataclass(frozen=True)
class HostPlatform:
    os: HostOS
    arch: HostArch
    home: Path
    environ: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.is_windows else ""

    @property
    def script_suffix(self) -> str:
        return ".bat" if self.is_windows else ""

    @property
    def path_sep(self) -> str:
        return ";" if self.is_windows else ":"

    @property
    def default_abi(self) -> str:
        if self.arch == "arm64" and not self.is_windows:
            return "arm64-v8a"
        return "x86_64"

    @property
    def cmdline_tools_os(self) -> str:
        return {"windows": "win", "macos": "mac", "linux": "linux"}[self.os]

    @property
    def jdk_os(self) -> str:
        return {"windows": "windows", "macos": "mac", "linux": "linux"}[self.os]

    @property
    def jdk_arch(self) -> str:
        return "aarch64" if self.arch == "arm64" else "x64"

    @property
    def jdk_archive_ext(self) -> str:
        return ".zip" if self.is_windows else ".tar.gz"

    @property
    def default_sdk_root(self) -> Path:
        if self.is_windows:
            local = self.environ.get("LOCALAPPDATA")
            base = Path(local) if local else self.home / "AppData" / "Local"
            return base / "Android" / "Sdk"
        if self.os == "macos":
            return self.home / "Library" / "Android" / "sdk"
        return self.home / "Android" / "Sdk"

    @property
    def android_env_dir(self) -> Path:
        """Where downloaded JDKs live (shared with earlier shell-script installs)."""

        return self.home / "AndroidEnv"

    def tool_filename(self, name: str) -> str:
        """`sdkmanager`/`avdmanager` ship as batch files on Windows; the rest as .exe."""

        if name in {"sdkmanager", "avdmanager", "gradlew"}:
            return name + self.script_suffix
        return name + self.exe_suffix

    def java_filename(self) -> str:
        return "java" + self.exe_suffix

    def needs_shell(self, program: str | Path) -> bool:
        return self.is_windows and str(program).lower().endswith(_SHELL_SCRIPT_SUFFIXES)

    def cmdline(self, argv: Sequence[str]) -> str:
        """Render argv for ``cmd.exe /c``; every token is quoted (SDK package ids contain ';')."""

        return " ".join(_cmd_quote(a) for a in argv)

    def android_studio_sdk_candidates(self) -> list[Path]:
        if self.is_windows:
            return [
                Path("C:/Program Files/Android/Android Studio"),
                Path("C:/Program Files/Android/Android Studio/jbr"),
            ]
        if self.os == "macos":
            return [Path("/Applications/Android Studio.app/Contents")]
        return [Path("/opt/android-studio"), self.home / "android-studio"]

    def browser_command(self, url: str) -> list[str]:
        if self.is_windows:
            # `start` treats the first quoted argument as a window title.
            return ["cmd.exe", "/d", "/c", "start", "", url]
        if self.os == "macos":
            if url.startswith(("chrome://", "devtools://")):
                return ["open", "-a", "Google Chrome", url]
            return ["open", url]
        return ["xdg-open", url]

    def detached_popen_kwargs(self) -> dict[str, Any]:
        """Popen kwargs that let a child outlive this process."""

        if self.is_windows:
            flags = getattr(subprocess, "DETACHED_PROCESS", 0x00000008) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200
            )
            return {"creationflags": flags}
        return {"start_new_session": True}


def detect_host(
    *,
    system: Optional[str] = None,
    machine: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> HostPlatform:
    env = dict(os.environ if environ is None else environ)
    return HostPlatform(
        os=_normalize_os(system or platform.system() or sys.platform),
        arch=_normalize_arch(machine or platform.machine()),
        home=home or Path.home(),
        environ=env,
    )
