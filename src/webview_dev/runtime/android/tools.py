"""Locate SDK binaries (sdkmanager, avdmanager, emulator, adb, aapt)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional

from webview_dev.errors import ToolchainUnavailable
from webview_dev.runtime.host import HostPlatform

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 5

# tool -> SDK-relative directories checked before the recursive search
_WELL_KNOWN: Mapping[str, tuple[str, ...]] = {
    "sdkmanager": ("cmdline-tools/latest/bin", "cmdline-tools/bin", "tools/bin"),
    "avdmanager": ("cmdline-tools/latest/bin", "cmdline-tools/bin", "tools/bin"),
    "emulator": ("emulator", "tools"),
    "adb": ("platform-tools",),
}


def resolve_sdk_root(
    host: HostPlatform,
    android_home: Optional[Path] = None,
    android_sdk_root: Optional[Path] = None,
) -> Path:
    """ANDROID_HOME, then ANDROID_SDK_ROOT, then an Android Studio bundled SDK, then the host default."""

    for hint in (android_home, android_sdk_root):
        if hint:
            return Path(hint).expanduser()
    for studio in host.android_studio_sdk_candidates():
        if not studio.is_dir():
            continue
        try:
            children = sorted(studio.iterdir())
        except OSError:
            continue
        for child in children:
            if child.is_dir() and "sdk" in child.name.lower():
                logger.info("Using Android Studio bundled SDK at %s", child)
                return child
    return host.default_sdk_root


def _walk_limited(root: Path, max_depth: int) -> Iterator[Path]:
    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).parts) - root_depth
        if depth >= max_depth:
            dirnames[:] = []
        dirnames.sort()
        for name in filenames:
            yield Path(dirpath) / name


def find_in_tree(root: Path, filename: str, max_depth: int = MAX_SEARCH_DEPTH) -> Optional[Path]:
    if not root.is_dir():
        return None
    for p in _walk_limited(root, max_depth):
        if p.name == filename and p.is_file():
            return p
    return None


def _first_existing(candidates: Iterable[Path]) -> Optional[Path]:
    for c in candidates:
        if c.is_file():
            return c
    return None


@dataclass(frozen=True)
class ToolPaths:
    sdkmanager: Optional[Path] = None
    avdmanager: Optional[Path] = None
    emulator: Optional[Path] = None
    adb: Optional[Path] = None

    @classmethod
    def resolve(
        cls,
        host: HostPlatform,
        sdk_root: Path,
        *,
        emulator_override: Optional[Path] = None,
        adb_override: Optional[Path] = None,
    ) -> "ToolPaths":
        overrides = {"emulator": emulator_override, "adb": adb_override}
        found: dict[str, Optional[Path]] = {}
        for f in fields(cls):
            name = f.name
            override = overrides.get(name)
            if override is not None:
                override = Path(override).expanduser()
                if override.is_file():
                    found[name] = override
                    continue
                logger.warning("%s override %s does not exist; searching the SDK", name, override)
            filename = host.tool_filename(name)
            path = _first_existing(sdk_root / rel / filename for rel in _WELL_KNOWN[name])
            if path is None:
                path = find_in_tree(sdk_root, filename)
            found[name] = path
        return cls(**found)

    def require(self, name: str) -> Path:
        path = getattr(self, name)
        if path is None:
            raise ToolchainUnavailable(f"{name} not found in the Android SDK")
        return path

    def bin_dirs(self) -> list[Path]:
        dirs: list[Path] = []
        for f in fields(self):
            p = getattr(self, f.name)
            if p is not None and p.parent not in dirs:
                dirs.append(p.parent)
        return dirs


def _version_key(name: str) -> tuple:
    parts = []
    for piece in name.replace("-", ".").split("."):
        parts.append((0, int(piece), "") if piece.isdigit() else (1, 0, piece))
    return tuple(parts)


def find_aapt(host: HostPlatform, sdk_root: Path) -> Optional[Path]:
    """aapt from the newest ``build-tools/<version>``."""

    bt = sdk_root / "build-tools"
    if not bt.is_dir():
        return None
    versions = sorted((d for d in bt.iterdir() if d.is_dir()), key=lambda d: _version_key(d.name))
    for d in reversed(versions):
        aapt = d / ("aapt" + host.exe_suffix)
        if aapt.is_file():
            return aapt
    return None
