"""Build (optional), install and launch the debug APK."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Mapping, Optional

from webview_dev.errors import ArtifactNotFound, BuildFailed, InstallFailed, LaunchFailed
from webview_dev.runtime.android.adb import Adb
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import ToolRunner

logger = logging.getLogger(__name__)

GRADLE_TIMEOUT_S = 1800.0
LAUNCHER_CATEGORY = "android.intent.category.LAUNCHER"

_BADGING_PACKAGE = re.compile(r"package:\s*name='([^']+)'")


def check_artifact(apk: Path) -> Path:
    if not apk.is_file():
        raise ArtifactNotFound(
            f"APK not found: {apk} (set ANDROID_APK, or ANDROID_BUILD_APK=1 to build it)"
        )
    return apk


def default_debug_apk(project_dir: Path) -> Path:
    return project_dir / "app" / "build" / "outputs" / "apk" / "debug" / "app-debug.apk"


def package_from_badging(text: str) -> Optional[str]:
    m = _BADGING_PACKAGE.search(text or "")
    return m.group(1) if m else None


async def build_debug_apk(
    host: HostPlatform,
    project_dir: Path,
    runner: ToolRunner,
    env: Optional[Mapping[str, str]] = None,
) -> Path:
    """Run ``gradlew assembleDebug`` and return the default output path."""

    gradlew = project_dir / host.tool_filename("gradlew")
    if not gradlew.is_file():
        raise BuildFailed(f"Gradle wrapper not found: {gradlew}")
    logger.info("Building debug APK in %s", project_dir)
    res = await runner(
        [str(gradlew.resolve()), "assembleDebug"],
        env=env,
        cwd=project_dir,
        timeout_s=GRADLE_TIMEOUT_S,
    )
    if not res.ok():
        tail = "\n".join(res.output.strip().splitlines()[-30:])
        raise BuildFailed(f"gradlew assembleDebug failed (exit code {res.returncode})\n{tail}")
    return default_debug_apk(project_dir)


class AppInstaller:
    def __init__(
        self,
        adb: Adb,
        runner: ToolRunner,
        *,
        aapt: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.adb = adb
        self._runner = runner
        self.aapt = aapt
        self._env = env

    async def install(self, serial: str, apk: Path) -> None:
        check_artifact(apk)
        logger.info("Installing %s on %s", apk, serial)
        res = await self.adb.install(serial, apk)
        if not res.ok() or "Failure" in res.output:
            raise InstallFailed(
                f"adb install failed on {serial} (exit code {res.returncode}): {res.output.strip()}"
            )

    async def resolve_package(self, apk: Path) -> Optional[str]:
        if self.aapt is None:
            return None
        res = await self._runner([str(self.aapt), "dump", "badging", str(apk)], env=self._env)
        if not res.ok():
            logger.debug("aapt dump badging failed: %s", res.stderr.strip())
            return None
        return package_from_badging(res.stdout)

    async def launch(self, serial: str, component: Optional[str], apk: Path) -> str:
        """Start the app; returns what was launched (component or package)."""

        if component:
            res = await self.adb.shell(serial, "am", "start", "-n", component)
            # `am start` exits 0 even when the activity is missing; it prints "Error:".
            if not res.ok() or "Error" in res.output:
                raise LaunchFailed(f"am start -n {component} failed: {res.output.strip()}")
            logger.info("Launched %s on %s", component, serial)
            return component

        pkg = await self.resolve_package(apk)
        if not pkg:
            raise LaunchFailed(
                f"no ANDROID_APP_COMPONENT set and the package name of {apk} could not be read with aapt"
            )
        res = await self.adb.shell(serial, "monkey", "-p", pkg, "-c", LAUNCHER_CATEGORY, "1")
        if not res.ok() or "No activities found" in res.output:
            raise LaunchFailed(f"monkey launch of {pkg} failed: {res.output.strip()}")
        logger.info("Launched %s on %s", pkg, serial)
        return pkg
