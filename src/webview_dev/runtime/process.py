"""Subprocess helpers.

Short-lived tools (adb, sdkmanager, avdmanager, java -version, gradlew) run
through :func:`run_tool` and return a :class:`ToolResult`. Long-lived children
(emulator, dev server, browser) are started with :func:`spawn_detached` and
keep running after the CLI exits.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from webview_dev.errors import ToolchainUnavailable
from webview_dev.runtime.host import HostPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


class ToolRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        stdin_text: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> Awaitable[ToolResult]: ...


# (argv, *, log_name, env=None, cwd=None) -> Popen-like with poll()/terminate()
Spawner = Callable[..., Any]


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def make_runner(host: HostPlatform) -> ToolRunner:
    """Bind :func:`run_tool` to a host so callers only pass argv/env."""

    async def _run(
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        stdin_text: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> ToolResult:
        return await run_tool(
            host, argv, env=env, cwd=cwd, stdin_text=stdin_text, timeout_s=timeout_s
        )

    return _run


async def run_tool(
    host: HostPlatform,
    argv: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
    stdin_text: Optional[str] = None,
    timeout_s: Optional[float] = None,
) -> ToolResult:
    """Run a short-lived tool and capture its output.

    A non-zero exit code is *not* an error here; callers decide. A binary that
    cannot be started at all raises :class:`ToolchainUnavailable`. On timeout
    the child is killed and the result carries returncode 124.
    """

    args = [str(a) for a in argv]
    env_dict = dict(env) if env is not None else None
    stdin = subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL
    logger.debug("exec: %s", " ".join(args))

    try:
        if host.needs_shell(args[0]):
            proc = await asyncio.create_subprocess_shell(
                host.cmdline(args),
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env_dict,
                cwd=str(cwd) if cwd else None,
            )
        else:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env_dict,
                cwd=str(cwd) if cwd else None,
            )
    except OSError as e:
        raise ToolchainUnavailable(f"cannot execute {args[0]}: {e}") from e

    payload = stdin_text.encode("utf-8") if stdin_text is not None else None
    try:
        out, err = await asyncio.wait_for(proc.communicate(payload), timeout=timeout_s)
    except asyncio.TimeoutError:
        proc.kill()
        out, err = await proc.communicate()
        logger.warning("Timed out after %.0fs: %s", timeout_s or 0, " ".join(args))
        return ToolResult(args=args, stdout=_decode(out), stderr=_decode(err), returncode=124)

    return ToolResult(
        args=args,
        stdout=_decode(out),
        stderr=_decode(err),
        returncode=int(proc.returncode if proc.returncode is not None else -1),
    )


def child_log_path(name: str) -> Path:
    d = Path(tempfile.gettempdir()) / "webview-dev"
    d.mkdir(parents=True, exist_ok=True)
    return d / f"{name}.log"


def spawn_detached(
    host: HostPlatform,
    argv: Sequence[str],
    *,
    log_name: str,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> subprocess.Popen:
    """Start a child in its own session/process group with output to a log file."""

    args = [str(a) for a in argv]
    log_path = child_log_path(log_name)
    logger.info("Starting %s (log: %s)", " ".join(args), log_path)
    kwargs = host.detached_popen_kwargs()
    try:
        with open(log_path, "ab") as log:
            if host.needs_shell(args[0]):
                return subprocess.Popen(
                    host.cmdline(args),
                    shell=True,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    env=dict(env) if env is not None else None,
                    cwd=str(cwd) if cwd else None,
                    **kwargs,
                )
            return subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                env=dict(env) if env is not None else None,
                cwd=str(cwd) if cwd else None,
                **kwargs,
            )
    except OSError as e:
        raise ToolchainUnavailable(f"cannot execute {args[0]}: {e}") from e


def make_spawner(host: HostPlatform) -> Spawner:
    def _spawn(
        argv: Sequence[str],
        *,
        log_name: str,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> subprocess.Popen:
        return spawn_detached(host, argv, log_name=log_name, env=env, cwd=cwd)

    return _spawn
