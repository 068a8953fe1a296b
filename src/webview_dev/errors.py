"""Failure taxonomy for the dev pipeline.

Every fatal failure carries the pipeline ``step`` it belongs to so the CLI can
say which step broke. Best-effort steps (optional SDK extras, the DevTools
bridge) never raise these; they log a warning instead.
"""

from __future__ import annotations


class WebviewDevError(RuntimeError):
    """Base class for fatal pipeline failures."""

    step = "pipeline"


class ToolchainUnavailable(WebviewDevError):
    """A JDK or SDK tool is missing and could not be installed."""

    step = "environment"


class PackageInstallFailed(WebviewDevError):
    step = "sdk-packages"

    def __init__(self, package: str, exit_code: int, detail: str = "") -> None:
        self.package = package
        self.exit_code = exit_code
        msg = f"sdkmanager failed to install {package!r} (exit code {exit_code})"
        if detail:
            msg += f"\n{detail}"
        super().__init__(msg)


class AvdCreationFailed(WebviewDevError):
    step = "avd"


class BootTimeout(WebviewDevError):
    step = "boot"


class EmulatorLaunchFailed(BootTimeout):
    """The emulator process exited during its crash window, twice."""


class DevServerUnavailable(WebviewDevError):
    step = "dev-server"


class ArtifactNotFound(WebviewDevError):
    step = "artifact"


class BuildFailed(WebviewDevError):
    step = "artifact"


class InstallFailed(WebviewDevError):
    step = "install"


class LaunchFailed(InstallFailed):
    step = "launch"
