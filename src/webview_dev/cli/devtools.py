"""Attach Chrome DevTools to the WebView of an app that is already running."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

from webview_dev.cli.run import (
    EXIT_FAILED,
    EXIT_INTERRUPTED,
    EXIT_OK,
    configure_logging,
    load_environment,
)
from webview_dev.errors import WebviewDevError
from webview_dev.runtime.android.adb import Adb
from webview_dev.runtime.android.devtools import TARGET_WAIT_S, DevToolsBridge
from webview_dev.runtime.android.tools import ToolPaths, resolve_sdk_root
from webview_dev.runtime.host import detect_host
from webview_dev.runtime.process import make_runner, make_spawner


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="webview-devtools", description=__doc__)
    parser.add_argument("--serial", type=str, default=environ.get("ANDROID_SERIAL"), help="adb serial (default: first emulator)")
    parser.add_argument("--port", type=int, default=environ.get("DEVTOOLS_PORT") or "9222", help="Local forward port (default: $DEVTOOLS_PORT or 9222)")
    parser.add_argument("--filter_title", type=str, default=None, help="Only pick targets whose title contains this.")
    parser.add_argument("--filter_url", type=str, default=None, help="Only pick targets whose URL contains this.")
    parser.add_argument("--max_wait_s", type=float, default=TARGET_WAIT_S, help="How long to wait for a page target.")
    parser.add_argument("--print_only", action="store_true", help="Print the DevTools URL instead of opening it.")
    parser.add_argument("--verbose", action="store_true")
    return parser


async def _run(args: argparse.Namespace, env: Mapping[str, str]) -> str:
    host = detect_host(environ=env)
    sdk_root = resolve_sdk_root(host, env.get("ANDROID_HOME") or None, env.get("ANDROID_SDK_ROOT") or None)
    adb_override = env.get("ANDROID_ADB")
    tools = ToolPaths.resolve(host, sdk_root, adb_override=adb_override or None)
    runner = make_runner(host)
    adb = Adb(tools.require("adb"), runner, env)

    serial = args.serial or await adb.find_running_emulator()
    if not serial:
        raise WebviewDevError("no running emulator found (pass --serial)")

    bridge = DevToolsBridge(adb=adb, host=host, spawner=make_spawner(host))
    report = await bridge.connect(
        serial,
        devtools_port=args.port,
        open_browser=not args.print_only,
        filter_title=args.filter_title,
        filter_url=args.filter_url,
        max_wait_s=args.max_wait_s,
    )
    return report.url


def main(argv: Optional[Sequence[str]] = None) -> int:
    env = load_environment(Path(".env"), os.environ)
    args = build_parser(env).parse_args(argv)
    configure_logging(args.verbose)
    try:
        url = asyncio.run(_run(args, env))
    except WebviewDevError as e:
        print(f"[webview-devtools] ERROR ({e.step}): {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    print(url)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
