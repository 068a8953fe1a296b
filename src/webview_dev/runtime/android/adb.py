"""Thin async adb client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from webview_dev.runtime.process import ToolResult, ToolRunner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0
INSTALL_TIMEOUT_S = 300.0


@dataclass(frozen=True)
class AdbDevice:
    serial: str
    state: str

    @property
    def is_emulator(self) -> bool:
        return self.serial.startswith("emulator-")

    @property
    def ready(self) -> bool:
        return self.state == "device"


def parse_devices(output: str) -> list[AdbDevice]:
    """Parse ``adb devices`` output into (serial, state) rows."""

    devices: list[AdbDevice] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith("*") or line.startswith("List of devices attached"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        devices.append(AdbDevice(serial=parts[0], state=parts[1]))
    return devices


class Adb:
    def __init__(
        self,
        adb_path: Path | str,
        runner: ToolRunner,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.adb_path = str(adb_path)
        self._runner = runner
        self._env = env

    async def run(
        self,
        args: Sequence[str],
        *,
        serial: Optional[str] = None,
        timeout_s: Optional[float] = DEFAULT_TIMEOUT_S,
    ) -> ToolResult:
        argv = [self.adb_path]
        if serial:
            argv += ["-s", serial]
        argv += [str(a) for a in args]
        return await self._runner(argv, env=self._env, timeout_s=timeout_s)

    async def shell(
        self, serial: str, *args: str, timeout_s: Optional[float] = DEFAULT_TIMEOUT_S
    ) -> ToolResult:
        return await self.run(["shell", *args], serial=serial, timeout_s=timeout_s)

    async def devices(self) -> list[AdbDevice]:
        res = await self.run(["devices"])
        if not res.ok():
            logger.debug("adb devices failed (rc=%s): %s", res.returncode, res.stderr.strip())
            return []
        return parse_devices(res.output)

    async def find_running_emulator(self, preferred_serial: Optional[str] = None) -> Optional[str]:
        """Preferred serial if listed in any state, else the first ready ``emulator-*``, else None.

        An ``offline`` preferred serial is an emulator still booting on that port.
        """

        devices = await self.devices()
        if preferred_serial and any(d.serial == preferred_serial for d in devices):
            return preferred_serial
        ready = [d for d in devices if d.ready and d.is_emulator]
        return ready[0].serial if ready else None

    async def getprop(self, serial: str, prop: str) -> str:
        res = await self.shell(serial, "getprop", prop)
        if not res.ok():
            return ""
        return (res.stdout or "").strip().strip("\r")

    async def install(self, serial: str, apk: Path) -> ToolResult:
        return await self.run(
            ["install", "-r", "-g", str(apk)], serial=serial, timeout_s=INSTALL_TIMEOUT_S
        )

    async def forward(self, serial: str, local: str, remote: str) -> ToolResult:
        return await self.run(["forward", local, remote], serial=serial)

    async def reverse(self, serial: str, remote: str, local: str) -> ToolResult:
        return await self.run(["reverse", remote, local], serial=serial)
