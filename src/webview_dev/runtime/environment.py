"""Immutable environment passed to every spawned tool.

The process environment is snapshotted once; Android/Java specific variables
and PATH prefixes are layered on top by building new instances. Nothing here
writes to ``os.environ``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional

from webview_dev.runtime.host import HostPlatform

logger = logging.getLogger(__name__)

_MSYS_DRIVE = re.compile(r"^/([a-zA-Z])(/.*)?$")
_FWD_DRIVE = re.compile(r"^([a-zA-Z]):/")


def sanitize_java_home(
    raw: Optional[str],
    host: HostPlatform,
    is_file: Callable[[Path], bool] = Path.is_file,
) -> Optional[str]:
    """Normalize a JAVA_HOME string; return None if it does not contain bin/java."""

    if raw is None:
        return None
    value = raw.strip().strip('"').strip("'").strip()
    if not value:
        return None

    if host.is_windows:
        m = _MSYS_DRIVE.match(value)
        if m:
            value = f"{m.group(1).upper()}:{m.group(2) or '/'}"
        if _FWD_DRIVE.match(value):
            value = value.replace("/", "\\")
        value = value.rstrip("\\/")
        # Keep "C:\" rather than "C:".
        if re.fullmatch(r"[a-zA-Z]:", value):
            value += "\\"
    else:
        value = value.rstrip("/") or "/"

    java = Path(value) / "bin" / host.java_filename()
    if not is_file(java):
        logger.warning("Ignoring JAVA_HOME=%s: %s does not exist", raw, java)
        return None
    return value


class RuntimeEnvironment(Mapping[str, str]):
    """Read-only env mapping; ``with_*`` methods return new instances."""

    def __init__(self, values: Mapping[str, str], host: HostPlatform) -> None:
        self._values: Mapping[str, str] = MappingProxyType(dict(values))
        self.host = host

    @classmethod
    def from_process(
        cls,
        host: HostPlatform,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RuntimeEnvironment":
        snapshot = dict(os.environ if environ is None else environ)
        java_home = sanitize_java_home(snapshot.get("JAVA_HOME"), host)
        if java_home:
            snapshot["JAVA_HOME"] = java_home
        else:
            snapshot.pop("JAVA_HOME", None)
        return cls(snapshot, host)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"RuntimeEnvironment({len(self)} vars, PATH={self.get('PATH', '')!r})"

    def with_overrides(self, **values: Optional[str]) -> "RuntimeEnvironment":
        """Set (or with ``None`` remove) variables."""

        merged: Dict[str, str] = dict(self._values)
        for key, value in values.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = str(value)
        return RuntimeEnvironment(merged, self.host)

    def with_path_prefix(self, dirs: Iterable[Path | str]) -> "RuntimeEnvironment":
        """Prepend directories to PATH, skipping ones already on it."""

        sep = self.host.path_sep
        current = [p for p in self._values.get("PATH", "").split(sep) if p]
        prefix = []
        for d in dirs:
            s = str(d)
            if s and s not in current and s not in prefix:
                prefix.append(s)
        if not prefix:
            return self
        return self.with_overrides(PATH=sep.join(prefix + current))

    def with_android(
        self,
        sdk_root: Path,
        java_home: Optional[Path] = None,
        tool_dirs: Iterable[Path] = (),
    ) -> "RuntimeEnvironment":
        env = self.with_overrides(
            ANDROID_HOME=str(sdk_root),
            ANDROID_SDK_ROOT=str(sdk_root),
        )
        dirs = list(tool_dirs)
        if java_home is not None:
            env = env.with_overrides(JAVA_HOME=str(java_home))
            dirs.insert(0, Path(java_home) / "bin")
        return env.with_path_prefix(dirs)
