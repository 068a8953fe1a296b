from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Callable

import httpx
import pytest
from fakes import FakeClock, FakeRunner, FakeSpawner, make_host, result

from webview_dev.config import RunConfig
from webview_dev.errors import ArtifactNotFound, BootTimeout
from webview_dev.pipeline import Pipeline

PROC_NET_UNIX = "Num RefCount Protocol Flags Type St Inode Path\n0: 00000002 0 10000 0001 01 1 @webview_devtools_remote_77\n"
TARGETS = [{"type": "page", "title": "app", "url": "http://10.0.2.2:5173/", "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/P1"}]


def _touch(p: Path) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("")
    return p


def _http(hits: list[str]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        if request.url.port == 9222:
            return httpx.Response(200, text=json.dumps(TARGETS))
        return httpx.Response(200, text="<html></html>")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _device_handler(booted: Callable[[], bool]):
    def handler(argv, stdin_text=None):
        if argv[-1] == "-version":
            return result(stderr='openjdk version "17.0.9" 2023-10-17\n')
        if argv[-1] == "devices":
            rows = "emulator-5554\tdevice\n" if booted() else ""
            return result("List of devices attached\n" + rows)
        if argv[-2:] == ["getprop", "sys.boot_completed"]:
            return result("1\n")
        if "install" in argv and "-r" in argv:
            return result("Performing Streamed Install\nSuccess\n")
        if argv[-4:-1] == ["am", "start", "-n"]:
            return result("Starting: Intent { cmp=com.ebview.android/.MainActivity }\n")
        if argv[-2:] == ["cat", "/proc/net/unix"]:
            return result(PROC_NET_UNIX)
        return result()

    return handler


def _run(pipeline: Pipeline, hits: list[str]):
    async def go():
        async with _http(hits) as client:
            pipeline.http_client = client
            return await pipeline.run()

    return asyncio.run(go())


def test_reuses_running_emulator_without_spawning(tmp_path: Path) -> None:
    sdk = tmp_path / "sdk"
    _touch(sdk / "platform-tools" / "adb")
    apk = _touch(tmp_path / "app-debug.apk")
    config = RunConfig.from_environ(
        {
            "SKIP_VITE_SERVER": "1",
            "ANDROID_HOME": str(sdk),
            "ANDROID_APK": str(apk),
            "WEBVIEW_DEV_OPEN_BROWSER": "0",
        }
    )
    runner = FakeRunner(_device_handler(lambda: True))
    spawner = FakeSpawner()
    clock = FakeClock()
    hits: list[str] = []
    pipeline = Pipeline(
        config, host=make_host(tmp_path), environ={"PATH": ""}, runner=runner, spawner=spawner,
        sleep=clock.sleep, clock=clock, show_progress=False,
    )

    res = _run(pipeline, hits)

    assert res.reused_emulator is True
    assert res.serial == "emulator-5554"
    assert res.dev_server_probes is None
    assert res.launched == "com.ebview.android/.MainActivity"
    assert spawner.spawned == []
    assert not any("sdkmanager" in a[0] or "avdmanager" in a[0] or "emulator" == Path(a[0]).name for a in runner.argvs())
    assert runner.matching("-s", "emulator-5554", "install", "-r", "-g", str(apk))
    assert runner.matching("reverse", "tcp:5173", "tcp:5173")
    assert all(":5173" not in h for h in hits)
    assert res.devtools is not None and res.devtools.url.endswith("ws=127.0.0.1:9222/devtools/page/P1")


def test_booting_emulator_on_configured_port_is_waited_for_not_respawned(tmp_path: Path) -> None:
    sdk = tmp_path / "sdk"
    _touch(sdk / "platform-tools" / "adb")
    apk = _touch(tmp_path / "app-debug.apk")
    config = RunConfig.from_environ(
        {
            "SKIP_VITE_SERVER": "1",
            "ANDROID_HOME": str(sdk),
            "ANDROID_APK": str(apk),
            "ANDROID_DEVICE": "s22",
            "WEBVIEW_DEV_OPEN_BROWSER": "0",
        }
    )
    polls: list[int] = []
    base = _device_handler(lambda: True)

    def handler(argv, stdin_text=None):
        if argv[-1] == "devices":
            polls.append(1)
            state = "offline" if len(polls) == 1 else "device"
            return result(f"List of devices attached\nemulator-5554\t{state}\n")
        return base(argv, stdin_text)

    runner = FakeRunner(handler)
    spawner = FakeSpawner()
    clock = FakeClock()
    pipeline = Pipeline(
        config, host=make_host(tmp_path), environ={"PATH": ""}, runner=runner, spawner=spawner,
        sleep=clock.sleep, clock=clock, show_progress=False,
    )

    res = _run(pipeline, [])

    assert res.reused_emulator is True
    assert res.serial == "emulator-5554"
    assert spawner.spawned == []
    assert len(polls) >= 2
    assert runner.matching("-s", "emulator-5554", "install", "-r", "-g", str(apk))


def test_missing_artifact_fails_before_any_adb_call(tmp_path: Path) -> None:
    sdk = tmp_path / "sdk"
    _touch(sdk / "platform-tools" / "adb")
    config = RunConfig.from_environ(
        {"ANDROID_HOME": str(sdk), "ANDROID_APK": str(tmp_path / "missing.apk"), "SKIP_VITE_SERVER": "1"}
    )
    runner = FakeRunner(_device_handler(lambda: True))
    spawner = FakeSpawner()
    pipeline = Pipeline(config, host=make_host(tmp_path), environ={}, runner=runner, spawner=spawner)

    with pytest.raises(ArtifactNotFound):
        _run(pipeline, [])
    assert runner.calls == []
    assert spawner.spawned == []


def _fresh_sdk(tmp_path: Path) -> Path:
    sdk = tmp_path / "sdk"
    for rel in (
        "cmdline-tools/latest/bin/sdkmanager",
        "cmdline-tools/latest/bin/avdmanager",
        "platform-tools/adb",
        "emulator/emulator",
    ):
        _touch(sdk / rel)
    _touch(tmp_path / "AndroidEnv" / "jdk-17" / "bin" / "java")
    return sdk


def test_fresh_boot_runs_full_preparation(tmp_path: Path) -> None:
    sdk = _fresh_sdk(tmp_path)
    apk = _touch(tmp_path / "app-debug.apk")
    avd_home = tmp_path / "avd"
    (tmp_path / "webview").mkdir()
    config = RunConfig.from_environ(
        {
            "ANDROID_HOME": str(sdk),
            "ANDROID_APK": str(apk),
            "ANDROID_DEVICE": "s22",
            "VITE_DEV_SERVER_DIR": str(tmp_path / "webview"),
            "WEBVIEW_DEV_OPEN_BROWSER": "0",
        }
    )
    spawner = FakeSpawner()
    base = _device_handler(lambda: bool(spawner.spawned))

    def handler(argv, stdin_text=None):
        if "create" in argv and "avd" in argv:
            (avd_home / "Galaxy_S22_API_30.avd").mkdir(parents=True)
        return base(argv, stdin_text)

    runner = FakeRunner(handler)
    clock = FakeClock()
    hits: list[str] = []
    pipeline = Pipeline(
        config, host=make_host(tmp_path), environ={"PATH": "", "ANDROID_AVD_HOME": str(avd_home)},
        runner=runner, spawner=spawner, sleep=clock.sleep, clock=clock, show_progress=False,
    )

    res = _run(pipeline, hits)

    assert res.reused_emulator is False
    assert res.profile is not None and res.profile.key == "s22"
    assert res.dev_server_probes == 1
    assert hits[0].startswith("http://127.0.0.1:5173")
    sdkm = [a[-1] for a in runner.argvs() if Path(a[0]).name == "sdkmanager"]
    assert sdkm == [
        "--licenses",
        "platform-tools",
        "emulator",
        "platforms;android-30",
        "system-images;android-30;google_apis;x86_64",
        "extras;google;gdk",
    ]
    assert len(runner.matching("create", "avd")) == 1
    assert [s.log_name for s in spawner.spawned] == ["emulator-5554"]
    assert spawner.spawned[0].argv[1:3] == ["-avd", "Galaxy_S22_API_30"]
    assert (avd_home / "Galaxy_S22_API_30.avd" / "config.ini").is_file()
    assert runner.matching("install", "-r", "-g", str(apk))


def test_boot_timeout_propagates(tmp_path: Path) -> None:
    sdk = _fresh_sdk(tmp_path)
    apk = _touch(tmp_path / "app-debug.apk")
    avd_dir = tmp_path / "avd" / "Galaxy_Note10_API_30.avd"
    avd_dir.mkdir(parents=True)
    config = RunConfig.from_environ(
        {
            "ANDROID_HOME": str(sdk),
            "ANDROID_APK": str(apk),
            "SKIP_VITE_SERVER": "1",
            "ANDROID_BOOT_TIMEOUT_S": "20",
        }
    )
    runner = FakeRunner(_device_handler(lambda: False))
    clock = FakeClock()
    pipeline = Pipeline(
        config, host=make_host(tmp_path), environ={"PATH": "", "ANDROID_AVD_HOME": str(tmp_path / "avd")},
        runner=runner, spawner=FakeSpawner(), sleep=clock.sleep, clock=clock, show_progress=False,
    )

    with pytest.raises(BootTimeout):
        _run(pipeline, [])
    assert runner.matching("install") == []
