"""SDK license acceptance and package installation via sdkmanager."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from webview_dev.devices import DeviceProfile
from webview_dev.errors import PackageInstallFailed
from webview_dev.runtime.android.tools import ToolPaths
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import ToolRunner

logger = logging.getLogger(__name__)

LICENSE_ANSWERS = 50
LICENSE_TIMEOUT_S = 300.0
INSTALL_TIMEOUT_S = 1800.0

HAXM_PACKAGE = "extras;intel;Hardware_Accelerated_Execution_Manager"
GDK_PACKAGE = "extras;google;gdk"


def required_packages(profile: DeviceProfile, abi: str) -> list[str]:
    return [
        "platform-tools",
        "emulator",
        f"platforms;{profile.api}",
        profile.system_image(abi),
    ]


def best_effort_packages(host: HostPlatform) -> list[str]:
    pkgs = []
    if host.is_windows and host.arch == "x86_64":
        pkgs.append(HAXM_PACKAGE)
    pkgs.append(GDK_PACKAGE)
    return pkgs


def package_dir(sdk_root: Path, package: str) -> Path:
    return sdk_root.joinpath(*package.split(";"))


def is_installed(sdk_root: Path, package: str) -> bool:
    return (package_dir(sdk_root, package) / "package.xml").is_file()


@dataclass
class InstallReport:
    installed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed_optional: list[str] = field(default_factory=list)


class SdkInstaller:
    def __init__(
        self,
        *,
        host: HostPlatform,
        sdk_root: Path,
        tools: ToolPaths,
        env: Mapping[str, str],
        runner: ToolRunner,
    ) -> None:
        self.host = host
        self.sdk_root = sdk_root
        self.tools = tools
        self._env = env
        self._runner = runner

    def _sdkmanager(self, *args: str) -> list[str]:
        return [str(self.tools.require("sdkmanager")), f"--sdk_root={self.sdk_root}", *args]

    async def accept_licenses(self) -> bool:
        res = await self._runner(
            self._sdkmanager("--licenses"),
            env=self._env,
            stdin_text="y\n" * LICENSE_ANSWERS,
            timeout_s=LICENSE_TIMEOUT_S,
        )
        if not res.ok():
            logger.warning(
                "sdkmanager --licenses exited with %s; continuing (%s)",
                res.returncode,
                res.stderr.strip()[-500:],
            )
            return False
        return True

    async def _install_one(self, package: str):
        logger.info("Installing SDK package %s", package)
        return await self._runner(
            self._sdkmanager(package),
            env=self._env,
            stdin_text="y\n" * LICENSE_ANSWERS,
            timeout_s=INSTALL_TIMEOUT_S,
        )

    async def install(
        self, required: Sequence[str], optional: Sequence[str] = ()
    ) -> InstallReport:
        report = InstallReport()
        for package in required:
            if is_installed(self.sdk_root, package):
                logger.debug("SDK package %s already installed", package)
                report.skipped.append(package)
                continue
            res = await self._install_one(package)
            if not res.ok():
                raise PackageInstallFailed(package, res.returncode, res.output.strip()[-2000:])
            report.installed.append(package)

        for package in optional:
            if is_installed(self.sdk_root, package):
                report.skipped.append(package)
                continue
            res = await self._install_one(package)
            if res.ok():
                report.installed.append(package)
            else:
                logger.warning(
                    "Optional SDK package %s failed to install (rc=%s); continuing",
                    package,
                    res.returncode,
                )
                report.failed_optional.append(package)
        return report

    async def ensure_for_profile(self, profile: DeviceProfile, abi: str) -> InstallReport:
        await self.accept_licenses()
        return await self.install(required_packages(profile, abi), best_effort_packages(self.host))
