from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

from dotenv import dotenv_values
from pydantic import ValidationError

from webview_dev.config import RunConfig
from webview_dev.devices import DeviceCatalogError, load_profiles, profiles_as_yaml
from webview_dev.errors import WebviewDevError
from webview_dev.pipeline import Pipeline
from webview_dev.runtime.host import detect_host

logger = logging.getLogger("webview_dev")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_environment(env_file: Path, environ: Mapping[str, str]) -> dict[str, str]:
    """Process env on top of ``env_file`` values; real variables win."""

    merged: dict[str, str] = {}
    if env_file.is_file():
        merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    merged.update(environ)
    return merged


def _print_error(step: str, message: str) -> None:
    print(f"[webview-dev] ERROR ({step}): {message}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webview-dev",
        description="Boot an Android emulator, install the WebView shell and point it at the dev server.",
    )
    parser.add_argument(
        "--env_file",
        type=Path,
        default=Path(".env"),
        help="dotenv file with defaults; real environment variables win (default: .env)",
    )
    parser.add_argument("--device", type=str, default=None, help="Device profile key (default: $ANDROID_DEVICE or prompt)")
    parser.add_argument("--apk", type=Path, default=None, help="APK to install (default: $ANDROID_APK or app-debug.apk)")
    parser.add_argument("--no_browser", action="store_true", help="Do not open DevTools in a browser.")
    parser.add_argument("--list_devices", action="store_true", help="Print the device catalog as YAML and exit.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    return parser


def main(argv: Optional[Sequence[str]] = None, *, environ: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.list_devices:
        try:
            print(profiles_as_yaml(load_profiles()), end="")
        except DeviceCatalogError as e:
            _print_error(e.step, str(e))
            return EXIT_FAILED
        return EXIT_OK

    env = load_environment(args.env_file, os.environ if environ is None else environ)
    try:
        config = RunConfig.from_environ(
            env,
            device=args.device,
            apk_path=args.apk,
            open_browser=False if args.no_browser else None,
        )
    except ValidationError as e:
        _print_error("config", str(e))
        return EXIT_CONFIG

    pipeline = Pipeline(
        config,
        host=detect_host(environ=env),
        environ=env,
        interactive=not config.device and sys.stdin.isatty(),
    )
    try:
        result = asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        if pipeline.dev_server is not None:
            pipeline.dev_server.stop()
        print("[webview-dev] interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except WebviewDevError as e:
        _print_error(e.step, str(e))
        return EXIT_FAILED

    print(f"[webview-dev] {result.launched} running on {result.serial}")
    print(f"[webview-dev] dev server: {config.dev_server_url}")
    if result.devtools is not None:
        print(f"[webview-dev] DevTools: {result.devtools.url}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
