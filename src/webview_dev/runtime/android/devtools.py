"""Chrome DevTools bridge for the in-app WebView.

Everything here is best effort. Failures are logged with the manual fallback
(``chrome://inspect/#devices``) and reported in :class:`DevToolsReport`; no
exception escapes :meth:`DevToolsBridge.connect`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from webview_dev.errors import WebviewDevError
from webview_dev.runtime.android.adb import Adb
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import Spawner

logger = logging.getLogger(__name__)

WEBVIEW_SOCKET_PREFIX = "webview_devtools_remote_"
CHROME_SOCKET = "chrome_devtools_remote"
INSPECT_URL = "chrome://inspect/#devices"
TARGET_WAIT_S = 15.0
TARGET_POLL_INTERVAL_S = 0.3


def find_devtools_socket(proc_net_unix: str) -> Optional[str]:
    """First ``@webview_devtools_remote_<pid>`` socket, else ``chrome_devtools_remote``."""

    chrome = None
    for line in proc_net_unix.splitlines():
        token = line.strip().split()[-1] if line.strip() else ""
        name = token.lstrip("@")
        if name.startswith(WEBVIEW_SOCKET_PREFIX):
            return name
        if name == CHROME_SOCKET and chrome is None:
            chrome = name
    return chrome


def inspector_url(ws_debugger_url: str) -> str:
    ws = ws_debugger_url
    for scheme in ("ws://", "wss://"):
        if ws.startswith(scheme):
            ws = ws[len(scheme):]
            break
    return f"devtools://devtools/bundled/inspector.html?ws={ws}"


def pick_target(
    targets: Any,
    *,
    filter_title: Optional[str] = None,
    filter_url: Optional[str] = None,
) -> Optional[dict]:
    if not isinstance(targets, list):
        return None
    for t in targets:
        if not isinstance(t, dict) or t.get("type") != "page":
            continue
        if filter_title and filter_title not in str(t.get("title", "")):
            continue
        if filter_url and filter_url not in str(t.get("url", "")):
            continue
        if t.get("webSocketDebuggerUrl"):
            return t
    return None


@dataclass
class DevToolsReport:
    socket: Optional[str] = None
    forwarded: bool = False
    reversed: bool = False
    target: Optional[dict] = None
    url: str = INSPECT_URL
    opened: bool = False
    warnings: list[str] = field(default_factory=list)

    def warn(self, msg: str) -> None:
        logger.warning("%s (open %s manually)", msg, INSPECT_URL)
        self.warnings.append(msg)


class DevToolsBridge:
    def __init__(
        self,
        *,
        adb: Adb,
        host: HostPlatform,
        spawner: Spawner,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adb = adb
        self.host = host
        self._spawner = spawner
        self._client = client
        self._sleep = sleep
        self._clock = clock

    async def find_socket(self, serial: str) -> Optional[str]:
        res = await self.adb.shell(serial, "cat", "/proc/net/unix")
        if not res.ok():
            return None
        return find_devtools_socket(res.stdout)

    async def _fetch_targets(self, client: httpx.AsyncClient, port: int) -> Any:
        base = f"http://127.0.0.1:{port}"
        for path in ("/json", "/json/list"):
            try:
                resp = await client.get(base + path)
            except httpx.HTTPError:
                continue
            if resp.status_code >= 400:
                continue
            try:
                data = resp.json()
            except ValueError:
                continue
            if data:
                return data
        return []

    async def wait_for_target(
        self,
        port: int,
        *,
        filter_title: Optional[str] = None,
        filter_url: Optional[str] = None,
        max_wait_s: float = TARGET_WAIT_S,
        interval_s: float = TARGET_POLL_INTERVAL_S,
    ) -> Optional[dict]:
        async def poll(client: httpx.AsyncClient) -> Optional[dict]:
            deadline = self._clock() + max_wait_s
            while True:
                targets = await self._fetch_targets(client, port)
                target = pick_target(targets, filter_title=filter_title, filter_url=filter_url)
                if target is not None or self._clock() >= deadline:
                    return target
                await self._sleep(interval_s)

        if self._client is not None:
            return await poll(self._client)
        async with httpx.AsyncClient(timeout=2.0) as client:
            return await poll(client)

    def open_browser(self, url: str) -> bool:
        try:
            self._spawner(self.host.browser_command(url), log_name="browser")
        except (OSError, WebviewDevError) as e:
            logger.warning("Could not open a browser for %s: %s", url, e)
            return False
        return True

    async def connect(
        self,
        serial: str,
        *,
        devtools_port: int,
        dev_server_port: Optional[int] = None,
        open_browser: bool = True,
        filter_title: Optional[str] = None,
        filter_url: Optional[str] = None,
        max_wait_s: float = TARGET_WAIT_S,
    ) -> DevToolsReport:
        report = DevToolsReport()
        try:
            report.socket = await self.find_socket(serial)
            if report.socket is None:
                report.warn(f"no WebView DevTools socket found on {serial}")
            else:
                res = await self.adb.forward(
                    serial, f"tcp:{devtools_port}", f"localabstract:{report.socket}"
                )
                report.forwarded = res.ok()
                if not report.forwarded:
                    report.warn(f"adb forward tcp:{devtools_port} failed: {res.output.strip()}")

            if dev_server_port:
                res = await self.adb.reverse(serial, f"tcp:{dev_server_port}", f"tcp:{dev_server_port}")
                report.reversed = res.ok()
                if not report.reversed:
                    report.warn(f"adb reverse tcp:{dev_server_port} failed: {res.output.strip()}")

            if report.forwarded:
                report.target = await self.wait_for_target(
                    devtools_port,
                    filter_title=filter_title,
                    filter_url=filter_url,
                    max_wait_s=max_wait_s,
                )
                if report.target is None:
                    report.warn(f"no page target on 127.0.0.1:{devtools_port} within {max_wait_s:.0f}s")
                else:
                    report.url = inspector_url(report.target["webSocketDebuggerUrl"])
        except (WebviewDevError, httpx.HTTPError, OSError) as e:
            report.warn(f"DevTools bridge failed: {e}")

        logger.info("DevTools: %s", report.url)
        if open_browser:
            report.opened = self.open_browser(report.url)
        return report
