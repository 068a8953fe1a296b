"""The ``webview-dev`` pipeline.

Order of work:

1. artifact preflight (optional Gradle build, APK must exist) before any adb call
2. reuse an emulator that is already booted, or
   select a device profile, then concurrently
   (bootstrap -> licenses -> packages -> AVD -> launch -> boot) and the dev-server gate
3. install and launch the app
4. DevTools bridge (best effort)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

import httpx

from webview_dev.config import RunConfig
from webview_dev.devices import DeviceProfile, load_profiles, select_profile
from webview_dev.devserver import DevServer
from webview_dev.runtime.android.adb import Adb
from webview_dev.runtime.android.avd import AvdManager, EmulatorSession, resolve_avd_home
from webview_dev.runtime.android.bootstrap import Bootstrapper, JavaRuntime
from webview_dev.runtime.android.devtools import DevToolsBridge, DevToolsReport
from webview_dev.runtime.android.installer import AppInstaller, build_debug_apk, check_artifact
from webview_dev.runtime.android.sdk import SdkInstaller
from webview_dev.runtime.android.tools import ToolPaths, find_aapt, resolve_sdk_root
from webview_dev.runtime.environment import RuntimeEnvironment
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import Spawner, ToolRunner, make_runner, make_spawner

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    serial: str
    apk: Path
    launched: str
    session: EmulatorSession
    profile: Optional[DeviceProfile] = None
    dev_server_probes: Optional[int] = None
    devtools: Optional[DevToolsReport] = None
    reused_emulator: bool = False


def _port_from_serial(serial: str, default: int) -> int:
    try:
        return int(serial.rsplit("-", 1)[1])
    except (IndexError, ValueError):
        return default


class Pipeline:
    def __init__(
        self,
        config: RunConfig,
        *,
        host: HostPlatform,
        environ: Mapping[str, str],
        runner: Optional[ToolRunner] = None,
        spawner: Optional[Spawner] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        profiles: Optional[Sequence[DeviceProfile]] = None,
        interactive: bool = False,
        ask: Optional[Callable[..., str]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        show_progress: bool = True,
    ) -> None:
        self.config = config
        self.host = host
        self.env = RuntimeEnvironment.from_process(host, environ)
        self.runner = runner or make_runner(host)
        self.spawner = spawner or make_spawner(host)
        self.http_client = http_client
        self._profiles = profiles
        self.interactive = interactive
        self._ask = ask
        self._sleep = sleep
        self._clock = clock
        self.show_progress = show_progress

        self.sdk_root = resolve_sdk_root(host, config.android_home, config.android_sdk_root)
        self._java: Optional[JavaRuntime] = None
        self.dev_server: Optional[DevServer] = None

    # -- helpers -----------------------------------------------------------

    def _resolve_tools(self) -> ToolPaths:
        return ToolPaths.resolve(
            self.host,
            self.sdk_root,
            emulator_override=self.config.emulator_override,
            adb_override=self.config.adb_override,
        )

    def _android_env(self, tools: ToolPaths) -> RuntimeEnvironment:
        java_home = self._java.home if self._java is not None else None
        return self.env.with_android(self.sdk_root, java_home, tools.bin_dirs())

    def _bootstrapper(self) -> Bootstrapper:
        return Bootstrapper(
            host=self.host,
            environ=self.env,
            runner=self.runner,
            client=self.http_client,
            show_progress=self.show_progress,
        )

    async def _java_runtime(self) -> JavaRuntime:
        if self._java is None:
            self._java = await self._bootstrapper().ensure_java()
        return self._java

    def _adb(self, tools: ToolPaths) -> Adb:
        return Adb(tools.require("adb"), self.runner, self._android_env(tools))

    def _avd_manager(self, tools: ToolPaths, adb: Adb) -> AvdManager:
        return AvdManager(
            tools=tools,
            adb=adb,
            avd_home=resolve_avd_home(self.host, self.env),
            env=self._android_env(tools),
            runner=self.runner,
            spawner=self.spawner,
            sleep=self._sleep,
            clock=self._clock,
            boot_timeout_s=self.config.boot_timeout_s,
            boot_poll_interval_s=self.config.boot_poll_interval_s,
        )

    def _make_dev_server(self) -> DevServer:
        return DevServer(
            url=self.config.host_dev_server_url,
            workdir=self.config.dev_server_dir,
            command=self.config.dev_server_command,
            attempts=self.config.dev_server_attempts,
            interval_s=self.config.dev_server_interval_s,
            skip=self.config.skip_dev_server,
            spawner=self.spawner,
            env=self.env,
            client=self.http_client,
            sleep=self._sleep,
        )

    # -- steps -------------------------------------------------------------

    async def preflight(self) -> Path:
        apk = self.config.apk_path
        if self.config.build_apk:
            java = await self._java_runtime()
            env = self.env.with_android(self.sdk_root, java.home)
            built = await build_debug_apk(self.host, self.config.project_dir, self.runner, env)
            if not apk.is_file():
                apk = built
        return check_artifact(apk)

    def select_device(self) -> DeviceProfile:
        profiles = self._profiles if self._profiles is not None else load_profiles()
        return select_profile(
            profiles, self.config.device, interactive=self.interactive, ask=self._ask
        )

    async def find_running_emulator(self) -> Optional[tuple[str, ToolPaths]]:
        tools = self._resolve_tools()
        if tools.adb is None:
            return None
        serial = await self._adb(tools).find_running_emulator(self.config.emulator_serial)
        if serial is None:
            return None
        return serial, tools

    async def prepare_and_boot(self, profile: DeviceProfile) -> tuple[EmulatorSession, ToolPaths]:
        t0 = self._clock()
        bootstrap = self._bootstrapper()
        await self._java_runtime()
        await bootstrap.ensure_cmdline_tools(self.sdk_root)
        tools = self._resolve_tools()

        abi = self.host.default_abi
        sdk = SdkInstaller(
            host=self.host,
            sdk_root=self.sdk_root,
            tools=tools,
            env=self._android_env(tools),
            runner=self.runner,
        )
        await sdk.ensure_for_profile(profile, abi)
        # emulator/adb may only exist after the package install.
        tools = self._resolve_tools()

        adb = self._adb(tools)
        avd = self._avd_manager(tools, adb)
        avd_name = self.config.avd_name or profile.avd_name
        await avd.ensure_avd(profile, abi, avd_name)
        session = await avd.launch(avd_name, self.config.emulator_port, headless=self.config.headless)
        await avd.wait_for_boot(session.serial, session.process)
        logger.info("Emulator ready after %.0fs", self._clock() - t0)
        return session, tools

    async def confirm_boot(self, serial: str, tools: ToolPaths) -> EmulatorSession:
        avd = self._avd_manager(tools, self._adb(tools))
        await avd.wait_for_boot(serial)
        return EmulatorSession(
            serial=serial,
            port=_port_from_serial(serial, self.config.emulator_port),
            avd_name=self.config.avd_name or "",
            started=False,
        )

    async def run(self) -> PipelineResult:
        apk = await self.preflight()
        self.dev_server = self._make_dev_server()

        profile: Optional[DeviceProfile] = None
        running = await self.find_running_emulator()
        if running is not None:
            serial, tools = running
            logger.info("Reusing running emulator %s", serial)
            session, probes = await asyncio.gather(
                self.confirm_boot(serial, tools), self.dev_server.ensure()
            )
        else:
            # The prompt is blocking; it must finish before gather.
            profile = self.select_device()
            (session, tools), probes = await asyncio.gather(
                self.prepare_and_boot(profile), self.dev_server.ensure()
            )

        adb = self._adb(tools)
        installer = AppInstaller(
            adb,
            self.runner,
            aapt=find_aapt(self.host, self.sdk_root),
            env=self._android_env(tools),
        )
        await installer.install(session.serial, apk)
        launched = await installer.launch(session.serial, self.config.app_component, apk)

        bridge = DevToolsBridge(
            adb=adb,
            host=self.host,
            spawner=self.spawner,
            client=self.http_client,
            sleep=self._sleep,
            clock=self._clock,
        )
        report = await bridge.connect(
            session.serial,
            devtools_port=self.config.devtools_port,
            dev_server_port=self.config.dev_server_port,
            open_browser=self.config.open_browser,
        )

        return PipelineResult(
            serial=session.serial,
            apk=apk,
            launched=launched,
            session=session,
            profile=profile,
            dev_server_probes=probes,
            devtools=report,
            reused_emulator=running is not None,
        )
