from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import httpx
import pytest
from fakes import FakeClock, FakeSpawner

from webview_dev.devserver import DevServer, host_url, wait_for_dev_server
from webview_dev.errors import DevServerUnavailable

URL = "http://127.0.0.1:5173"


def _client(statuses: list, hits: list[str]) -> httpx.AsyncClient:
    """Each probe pops the next status; an exception instance is raised instead."""

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        status = statuses.pop(0) if statuses else 503
        if isinstance(status, type) and issubclass(status, Exception):
            raise status("down", request=request)
        return httpx.Response(status)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _gate(statuses: list, attempts: int, clock: FakeClock, hits: list[str]) -> int:
    async def go():
        async with _client(statuses, hits) as client:
            return await wait_for_dev_server(URL, attempts=attempts, interval_s=1.0, client=client, sleep=clock.sleep)

    return asyncio.run(go())


def test_success_on_nth_probe_uses_exactly_n_probes() -> None:
    clock, hits = FakeClock(), []
    n = _gate([httpx.ConnectError, 500, 404, 200], attempts=60, clock=clock, hits=hits)
    assert n == 4
    assert len(hits) == 4
    assert clock.sleeps == [1.0, 1.0, 1.0]


def test_redirect_counts_as_up() -> None:
    clock, hits = FakeClock(), []
    assert _gate([302], attempts=3, clock=clock, hits=hits) == 1
    assert clock.sleeps == []


def test_permanent_failure_spends_exactly_the_budget() -> None:
    clock, hits = FakeClock(), []
    with pytest.raises(DevServerUnavailable) as excinfo:
        _gate([], attempts=5, clock=clock, hits=hits)
    assert len(hits) == 5
    # No sleep after the last probe.
    assert clock.sleeps == [1.0] * 4
    assert excinfo.value.step == "dev-server"


def test_skip_neither_spawns_nor_probes(tmp_path: Path) -> None:
    spawner = FakeSpawner()
    hits: list[str] = []

    async def go():
        async with _client([], hits) as client:
            server = DevServer(url=URL, workdir=tmp_path, skip=True, spawner=spawner, client=client)
            return await server.ensure()

    assert asyncio.run(go()) is None
    assert hits == []
    assert spawner.spawned == []


def test_running_server_is_not_spawned(tmp_path: Path) -> None:
    spawner = FakeSpawner()
    hits: list[str] = []

    async def go():
        async with _client([200], hits) as client:
            return await DevServer(url=URL, workdir=tmp_path, spawner=spawner, client=client).ensure()

    assert asyncio.run(go()) == 1
    assert spawner.spawned == []


def test_down_server_is_spawned_then_gated(tmp_path: Path) -> None:
    spawner = FakeSpawner()
    clock = FakeClock()
    hits: list[str] = []
    previous = signal.getsignal(signal.SIGINT)

    async def go():
        async with _client([httpx.ConnectError, httpx.ConnectError, 200], hits) as client:
            server = DevServer(
                url=URL, workdir=tmp_path, attempts=10, spawner=spawner, client=client, sleep=clock.sleep
            )
            probes = await server.ensure()
            return server, probes

    try:
        server, probes = asyncio.run(go())
        assert probes == 2
        assert len(hits) == 3
        assert spawner.spawned[0].argv == ["npm", "run", "dev"]
        assert spawner.spawned[0].cwd == tmp_path
        assert signal.getsignal(signal.SIGINT) == server._on_sigint
        server.stop()
        assert spawner.spawned[0].process.terminated is True
    finally:
        signal.signal(signal.SIGINT, previous)


def test_missing_workdir_is_fatal(tmp_path: Path) -> None:
    hits: list[str] = []

    async def go():
        async with _client([httpx.ConnectError], hits) as client:
            await DevServer(url=URL, workdir=tmp_path / "webview", spawner=FakeSpawner(), client=client).ensure()

    with pytest.raises(DevServerUnavailable):
        asyncio.run(go())


def test_host_url_maps_emulator_alias_to_loopback() -> None:
    assert host_url("http://10.0.2.2:5173/app?x=1") == "http://127.0.0.1:5173/app?x=1"
    assert host_url("http://localhost:5173") == "http://localhost:5173"
