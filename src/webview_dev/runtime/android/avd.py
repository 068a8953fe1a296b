"""AVD lifecycle: create, configure, launch and wait for boot.

Only two retries exist in this module: ``avdmanager create`` is retried once
without ``--device`` and a crashing emulator is relaunched once with
``-accel off``. Everything else fails on the first error.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

from webview_dev.devices import DeviceProfile
from webview_dev.errors import AvdCreationFailed, BootTimeout, EmulatorLaunchFailed
from webview_dev.runtime.android.adb import Adb
from webview_dev.runtime.android.avd_config import upsert_config_file
from webview_dev.runtime.android.tools import ToolPaths
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import Spawner, ToolRunner

logger = logging.getLogger(__name__)

HARDWARE_PROFILE = "pixel_5"
CRASH_WINDOW_S = 10.0
CRASH_CHECK_INTERVAL_S = 0.5
BOOT_TIMEOUT_S = 300.0
BOOT_POLL_INTERVAL_S = 2.0
CREATE_TIMEOUT_S = 300.0

_TAG_DISPLAY = {
    "google_apis": "Google APIs",
    "google_apis_playstore": "Google Play",
    "default": "Default Android System Image",
}


@dataclass
class EmulatorSession:
    serial: str
    port: int
    avd_name: str
    process: Optional[subprocess.Popen] = None
    started: bool = False
    accel: Optional[str] = None


def resolve_avd_home(host: HostPlatform, environ: Mapping[str, str]) -> Path:
    """ANDROID_AVD_HOME, then ANDROID_USER_HOME/avd, then ~/.android/avd."""

    explicit = (environ.get("ANDROID_AVD_HOME") or "").strip()
    if explicit:
        return Path(explicit).expanduser()
    user_home = (environ.get("ANDROID_USER_HOME") or "").strip()
    if user_home:
        return Path(user_home).expanduser() / "avd"
    return host.home / ".android" / "avd"


def _cpu_arch(abi: str) -> str:
    return "arm64" if abi.startswith("arm64") else "x86_64"


def avd_config_overrides(profile: DeviceProfile, avd_name: str, abi: str) -> dict[str, str]:
    sysdir = f"system-images/{profile.api}/{profile.variant}/{abi}/"
    return {
        "AvdId": avd_name,
        "avd.ini.displayname": profile.label,
        "abi.type": abi,
        "hw.cpu.arch": _cpu_arch(abi),
        "hw.cpu.ncore": str(profile.cpu_cores),
        "hw.lcd.width": str(profile.screen.width),
        "hw.lcd.height": str(profile.screen.height),
        "hw.lcd.density": str(profile.screen.density),
        "hw.ramSize": str(profile.ram_mb),
        "hw.gpu.enabled": "yes",
        "hw.gpu.mode": "auto",
        "skin.name": f"{profile.screen.width}x{profile.screen.height}",
        "image.sysdir.1": sysdir,
        "tag.id": profile.variant,
        "tag.display": _TAG_DISPLAY.get(profile.variant, profile.variant),
        "PlayStore.enabled": "yes" if "playstore" in profile.variant else "no",
    }


def emulator_args(
    emulator: Path | str, avd_name: str, port: int, *, accel: str, headless: bool
) -> list[str]:
    args = [
        str(emulator),
        "-avd",
        avd_name,
        "-port",
        str(port),
        "-no-snapshot",
        "-netdelay",
        "none",
        "-netspeed",
        "full",
        "-accel",
        accel,
        "-gpu",
        "auto",
    ]
    if headless:
        args.append("-no-window")
    return args


class AvdManager:
    def __init__(
        self,
        *,
        tools: ToolPaths,
        adb: Adb,
        avd_home: Path,
        env: Mapping[str, str],
        runner: ToolRunner,
        spawner: Spawner,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        crash_window_s: float = CRASH_WINDOW_S,
        boot_timeout_s: float = BOOT_TIMEOUT_S,
        boot_poll_interval_s: float = BOOT_POLL_INTERVAL_S,
    ) -> None:
        self.tools = tools
        self.adb = adb
        self.avd_home = avd_home
        self._env = dict(env)
        self._env["ANDROID_AVD_HOME"] = str(avd_home)
        self._runner = runner
        self._spawner = spawner
        self._sleep = sleep
        self._clock = clock
        self.crash_window_s = crash_window_s
        self.boot_timeout_s = boot_timeout_s
        self.boot_poll_interval_s = boot_poll_interval_s

    def avd_dir(self, avd_name: str) -> Path:
        return self.avd_home / f"{avd_name}.avd"

    async def _create(self, avd_name: str, image: str, *, with_device: bool):
        avdmanager = self.tools.require("avdmanager")
        argv = [str(avdmanager), "create", "avd", "-n", avd_name, "-k", image]
        if with_device:
            argv += ["--device", HARDWARE_PROFILE]
        argv.append("--force")
        # "no" answers the "custom hardware profile?" prompt.
        return await self._runner(
            argv, env=self._env, stdin_text="no\n", timeout_s=CREATE_TIMEOUT_S
        )

    async def ensure_avd(self, profile: DeviceProfile, abi: str, avd_name: Optional[str] = None) -> Path:
        """Create the AVD if missing, then upsert the profile's hardware keys."""

        name = avd_name or profile.avd_name
        avd_dir = self.avd_dir(name)
        image = profile.system_image(abi)

        if avd_dir.is_dir():
            logger.info("AVD %s already exists at %s", name, avd_dir)
        else:
            self.avd_home.mkdir(parents=True, exist_ok=True)
            logger.info("Creating AVD %s from %s", name, image)
            res = await self._create(name, image, with_device=True)
            if not res.ok():
                logger.warning(
                    "avdmanager create with --device %s failed (rc=%s); retrying without it",
                    HARDWARE_PROFILE,
                    res.returncode,
                )
                res = await self._create(name, image, with_device=False)
            if not res.ok():
                raise AvdCreationFailed(
                    f"avdmanager create avd failed for {name} (exit code {res.returncode})\n"
                    + res.output.strip()
                )
            if not avd_dir.is_dir():
                raise AvdCreationFailed(f"avdmanager reported success but {avd_dir} does not exist")

        upsert_config_file(avd_dir / "config.ini", avd_config_overrides(profile, name, abi))
        return avd_dir

    async def _spawn_and_watch(
        self, avd_name: str, port: int, *, accel: str, headless: bool
    ) -> tuple[Any, Optional[int]]:
        emulator = self.tools.require("emulator")
        argv = emulator_args(emulator, avd_name, port, accel=accel, headless=headless)
        proc = self._spawner(argv, log_name=f"emulator-{port}", env=self._env)
        checks = max(1, int(self.crash_window_s / CRASH_CHECK_INTERVAL_S))
        for _ in range(checks):
            rc = proc.poll()
            if rc is not None:
                return proc, rc
            await self._sleep(CRASH_CHECK_INTERVAL_S)
        return proc, proc.poll()

    async def launch(self, avd_name: str, port: int, *, headless: bool = False) -> EmulatorSession:
        serial = f"emulator-{port}"
        proc, rc = await self._spawn_and_watch(avd_name, port, accel="on", headless=headless)
        accel = "on"
        if rc is not None:
            logger.warning(
                "Emulator exited early (rc=%s) with -accel on; retrying with -accel off", rc
            )
            proc, rc = await self._spawn_and_watch(avd_name, port, accel="off", headless=headless)
            accel = "off"
            if rc is not None:
                raise EmulatorLaunchFailed(
                    f"emulator for {avd_name} exited during startup twice (last exit code {rc})"
                )
        logger.info("Emulator %s started (pid %s, accel %s)", serial, getattr(proc, "pid", "?"), accel)
        return EmulatorSession(
            serial=serial, port=port, avd_name=avd_name, process=proc, started=True, accel=accel
        )

    async def wait_for_boot(self, serial: str, process: Optional[Any] = None) -> float:
        """Poll adb until ``serial`` is online and ``sys.boot_completed`` is 1.

        Returns the elapsed seconds. Raises :class:`BootTimeout` when the
        overall deadline passes.
        """

        start = self._clock()
        deadline = start + self.boot_timeout_s

        def check_budget(phase: str) -> None:
            if process is not None and process.poll() is not None:
                raise EmulatorLaunchFailed(
                    f"emulator process for {serial} exited (rc={process.poll()}) while {phase}"
                )
            if self._clock() >= deadline:
                raise BootTimeout(
                    f"{serial} did not finish booting within {self.boot_timeout_s:.0f}s ({phase})"
                )

        while True:
            states = {d.serial: d.state for d in await self.adb.devices()}
            if states.get(serial) == "device":
                break
            logger.debug("Waiting for %s (state: %s)", serial, states.get(serial, "absent"))
            check_budget("waiting for adb")
            await self._sleep(self.boot_poll_interval_s)

        while True:
            if await self.adb.getprop(serial, "sys.boot_completed") == "1":
                break
            check_budget("waiting for sys.boot_completed")
            await self._sleep(self.boot_poll_interval_s)

        elapsed = self._clock() - start
        logger.info("%s booted in %.0fs", serial, elapsed)
        return elapsed
