"""Dev-server readiness gate and optional ``npm run dev`` launcher."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

import httpx

from webview_dev.errors import DevServerUnavailable
from webview_dev.runtime.process import Spawner

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_S = 2.0

# The emulator reaches the host loopback through this address.
EMULATOR_HOST_ALIAS = "10.0.2.2"


def host_url(url: str) -> str:
    """Rewrite the device-side ``10.0.2.2`` host to ``127.0.0.1`` for probing from the host."""

    parts = urlsplit(url)
    if parts.hostname != EMULATOR_HOST_ALIAS:
        return url
    netloc = parts.netloc.replace(EMULATOR_HOST_ALIAS, "127.0.0.1", 1)
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


async def probe(client: httpx.AsyncClient, url: str) -> bool:
    """One GET; True on status < 400. Transport errors count as "not ready"."""

    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        logger.debug("probe %s: %s", url, e)
        return False
    return resp.status_code < 400


async def wait_for_dev_server(
    url: str,
    *,
    attempts: int,
    interval_s: float,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """Probe ``url`` up to ``attempts`` times; return the probe count that succeeded.

    Sleeps ``interval_s`` between probes but not after the last one. Raises
    :class:`DevServerUnavailable` once the budget is spent.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    async def run(c: httpx.AsyncClient) -> int:
        for n in range(1, attempts + 1):
            if await probe(c, url):
                logger.info("Dev server at %s is up (probe %d/%d)", url, n, attempts)
                return n
            if n < attempts:
                await sleep(interval_s)
        raise DevServerUnavailable(f"dev server at {url} not reachable after {attempts} probes")

    if client is not None:
        return await run(client)
    async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_S) as c:
        return await run(c)


class DevServer:
    """Makes sure the dev server is serving before the app is launched."""

    def __init__(
        self,
        *,
        url: str,
        workdir: Path,
        command: Sequence[str] = ("npm", "run", "dev"),
        attempts: int = 60,
        interval_s: float = 1.0,
        skip: bool = False,
        spawner: Spawner,
        env: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.workdir = workdir
        self.command = list(command)
        self.attempts = attempts
        self.interval_s = interval_s
        self.skip = skip
        self._spawner = spawner
        self._env = env
        self._client = client
        self._sleep = sleep
        self.process: Optional[Any] = None
        self._previous_sigint: Any = None

    async def _gate(self, client: httpx.AsyncClient) -> Optional[int]:
        if await probe(client, self.url):
            logger.info("Dev server already running at %s", self.url)
            return 1
        if not self.workdir.is_dir():
            raise DevServerUnavailable(
                f"dev server is down and {self.workdir} does not exist (set VITE_DEV_SERVER_DIR)"
            )
        self.process = self._spawner(self.command, log_name="dev-server", env=self._env, cwd=self.workdir)
        self._install_sigint_handler()
        return await wait_for_dev_server(
            self.url,
            attempts=self.attempts,
            interval_s=self.interval_s,
            client=client,
            sleep=self._sleep,
        )

    async def ensure(self) -> Optional[int]:
        """Returns the number of gate probes used, or None when skipped."""

        if self.skip:
            logger.info("SKIP_VITE_SERVER=1: not starting or probing the dev server")
            return None
        if self._client is not None:
            return await self._gate(self._client)
        async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_S) as client:
            return await self._gate(client)

    def stop(self) -> None:
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        logger.info("Stopping dev server (pid %s)", getattr(proc, "pid", "?"))
        proc.terminate()

    def _install_sigint_handler(self) -> None:
        try:
            self._previous_sigint = signal.getsignal(signal.SIGINT)
            signal.signal(signal.SIGINT, self._on_sigint)
        except ValueError:
            # Not on the main thread.
            self._previous_sigint = None

    def _on_sigint(self, signum: int, frame: Any) -> None:
        self.stop()
        previous = self._previous_sigint
        if callable(previous):
            previous(signum, frame)
        else:
            raise KeyboardInterrupt
